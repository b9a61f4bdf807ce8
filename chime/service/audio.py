"""Raw PCM playback for spoken announcements.

Wyoming TTS streams PCM with a sample rate, width and channel count announced
in ``AudioStart``. The sink pipes it into the first installed command-line
player that has a sample format for that width.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
from asyncio.subprocess import Process

LOGGER = logging.getLogger("chime.audio")

PLAYER_PREFERENCE = ("pw-play", "paplay", "aplay")

# Sample format names per player, keyed by bytes per sample.
SAMPLE_FORMATS: dict[str, dict[int, str]] = {
    "pw-play": {1: "s8", 2: "s16", 4: "s32"},
    "paplay": {1: "s8", 2: "s16le", 3: "s24le", 4: "s32le"},
    "aplay": {1: "U8", 2: "S16_LE", 3: "S24_LE", 4: "S32_LE"},
}


def playback_command(player: str, rate: int, width: int, channels: int) -> list[str] | None:
    """Command line reading raw PCM from stdin; None when ``player`` has no format for ``width``.

    Players other than pw-play and paplay are driven with aplay's flags.
    """
    name = os.path.basename(player)
    fmt = SAMPLE_FORMATS.get(name, SAMPLE_FORMATS["aplay"]).get(width)
    if fmt is None:
        return None
    if name in ("pw-play", "paplay"):
        return [player, "--raw", f"--rate={rate}", f"--channels={channels}", f"--format={fmt}", "-"]
    return [player, "-q", "-t", "raw", "-f", fmt, "-c", str(channels), "-r", str(rate), "-"]


def _installed(binary: str) -> bool:
    if os.path.isabs(binary):
        return os.access(binary, os.X_OK)
    return shutil.which(binary) is not None


class AplaySink:
    """Pipe PCM into ``pw-play``, ``paplay`` or ``aplay`` (or ``CHIME_AUDIO_PLAYER``)."""

    def __init__(self, binary: str | None = None, logger: logging.Logger | None = None) -> None:
        self.binary = binary or os.environ.get("CHIME_AUDIO_PLAYER") or "auto"
        self._proc: Process | None = None
        self._logger = logger or LOGGER

    @property
    def active(self) -> bool:
        return self._proc is not None

    def candidates(self) -> list[str]:
        """Players to try in order: the configured one first, then whatever is installed."""
        installed = [name for name in PLAYER_PREFERENCE if _installed(name)]
        if self.binary != "auto":
            if _installed(self.binary):
                return [self.binary, *(name for name in installed if name != self.binary)]
            self._logger.warning("Requested audio player '%s' not found; falling back to auto-detection", self.binary)
        return installed or ["aplay"]

    def command_for(self, rate: int, width: int, channels: int) -> list[str]:
        for player in self.candidates():
            command = playback_command(player, rate, width, channels)
            if command is not None:
                return command
            self._logger.debug("%s has no sample format for width=%s", player, width)
        raise RuntimeError(f"No audio player handles {width}-byte samples")

    async def start(self, rate: int, width: int, channels: int) -> None:
        await self.stop()
        command = self.command_for(rate, width, channels)
        self._logger.debug("Starting playback: %s", " ".join(command))
        self._proc = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

    async def write(self, chunk: bytes) -> None:
        proc = self._proc
        if proc is None or proc.stdin is None:
            raise RuntimeError("Playback is not active")
        try:
            proc.stdin.write(chunk)
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            await self.stop()
            raise RuntimeError("Playback process exited unexpectedly") from exc

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        if proc.stdin is not None:
            proc.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await proc.stdin.wait_closed()
        try:
            await asyncio.wait_for(proc.wait(), timeout=2)
        except asyncio.TimeoutError:
            self._logger.debug("Player did not exit after end of stream; terminating")
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
