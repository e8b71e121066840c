"""Shared test doubles."""

import asyncio

from transcription_service.asr.interface import Segment, SpeechEngine, Transcription


class FakeEngine(SpeechEngine):
    """Scripted speech engine.

    Responses are looked up by filename (e.g. "chunk_1.mp3"); an Exception
    value is raised instead of returned.
    """

    name = "fake"

    def __init__(self, default=None, by_filename=None, delays=None, block=None):
        self.default = default or Transcription(
            text="hello",
            segments=[Segment(0.0, 1.0, "hello", avg_logprob=-0.1, no_speech_prob=0.01)],
            duration=1.0,
            language="hebrew",
        )
        self.by_filename = by_filename or {}
        self.delays = delays or {}
        self.block = block
        self.started = asyncio.Event()
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def transcribe(self, audio, filename, language, prompt=None):
        self.calls.append(
            {"audio": audio, "filename": filename, "language": language, "prompt": prompt}
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.block is not None:
                await self.block.wait()
            await asyncio.sleep(self.delays.get(filename, 0))
            outcome = self.by_filename.get(filename, self.default)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            self.in_flight -= 1

    async def aclose(self):
        self.closed = True
