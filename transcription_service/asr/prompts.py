"""Domain-vocabulary prompts that bias recognition toward the product's subject.

Only Hebrew has a prompt: the service transcribes client meetings of an
architecture / interior design practice, mostly held in Hebrew.
"""

HEBREW_DOMAIN_PROMPT = (
    "שיחה בעברית בנושא אדריכלות, עיצוב פנים, שיפוץ, חומרים, תכנון, "
    "לקוחות, פרויקטים, הצעות מחיר, קבלנים"
)

DOMAIN_PROMPTS: dict[str, str] = {
    "he": HEBREW_DOMAIN_PROMPT,
}


def prompt_for_language(language: str | None) -> str | None:
    """Return the domain prompt for a language, or None."""
    if not language:
        return None
    return DOMAIN_PROMPTS.get(language.lower())
