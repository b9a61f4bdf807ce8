"""Spoken announcements through a Wyoming TTS server."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Protocol

from wyoming.audio import AudioChunk, AudioStart, AudioStop
from wyoming.client import AsyncTcpClient
from wyoming.tts import Synthesize, SynthesizeVoice

from chime.utils import await_with_timeout

from .audio import AplaySink
from .config import SpeechConfig, WyomingEndpoint

LOGGER = logging.getLogger("chime.wyoming")


class SpeechOutputService(Protocol):
    def speak(self, text: str) -> None: ...


async def play_tts_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    sink: AplaySink,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> None:
    """Synthesize speech via Wyoming TTS and stream it directly to the provided sink."""

    started = False
    try:
        # The stream ends on its own after AudioStop so the client disconnects promptly.
        async for event in _tts_event_stream(text, endpoint=endpoint, voice_name=voice_name, timeout=timeout):
            if AudioStart.is_type(event.type):
                audio_start = AudioStart.from_event(event)
                await sink.start(audio_start.rate, audio_start.width, audio_start.channels)
                started = True
            elif AudioChunk.is_type(event.type):
                chunk = AudioChunk.from_event(event)
                await sink.write(chunk.audio)
    finally:
        if started:
            await sink.stop()


async def _tts_event_stream(
    text: str,
    *,
    endpoint: WyomingEndpoint,
    voice_name: str | None = None,
    timeout: float | None = None,
) -> AsyncIterator:
    client = AsyncTcpClient(endpoint.host, endpoint.port)
    await await_with_timeout(client.connect(), timeout)
    voice = SynthesizeVoice(name=voice_name) if voice_name else None
    try:
        await await_with_timeout(client.write_event(Synthesize(text=text, voice=voice).event()), timeout)
        while True:
            event = await await_with_timeout(client.read_event(), timeout)
            if event is None:
                break
            yield event
            if AudioStop.is_type(event.type):
                break
    finally:
        await client.disconnect()


class WyomingSpeechService:
    """Fire-and-forget speech; utterances play one at a time."""

    def __init__(
        self,
        config: SpeechConfig,
        sink: AplaySink | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.sink = sink or AplaySink(logger=logger)
        self._logger = logger or LOGGER
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    def speak(self, text: str) -> None:
        if not text:
            return
        if self.config.tts_endpoint is None:
            self._logger.debug("No TTS endpoint configured; not speaking %r", text)
            return
        task = asyncio.get_running_loop().create_task(self._speak(text))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _speak(self, text: str) -> None:
        endpoint = self.config.tts_endpoint
        if endpoint is None:
            return
        async with self._lock:
            try:
                await play_tts_stream(
                    text,
                    endpoint=endpoint,
                    sink=self.sink,
                    voice_name=self.config.voice,
                    timeout=self.config.timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.warning("Speech playback failed: %s", exc)

    async def drain(self) -> None:
        """Wait for utterances already queued."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
        await self.sink.stop()
