"""Ring buffer of 8-bit stereo samples between the APU and the audio device."""

from __future__ import annotations

CHUNK_SAMPLES = 512
CHUNK_COUNT = 32
CHANNELS = 2


class SampleRing:
    """Circular buffer of signed 8-bit stereo frames."""

    def __init__(self, size: int = CHUNK_SAMPLES * CHUNK_COUNT) -> None:
        if size <= 0:
            raise ValueError("ring size must be positive")
        self.size = size
        self._buffer = bytearray(size * CHANNELS)
        self._write = 0
        self._read = 0

    def push(self, left: int, right: int) -> None:
        """Store one stereo frame; values are truncated to signed 8 bits."""
        at = self._write * CHANNELS
        self._buffer[at] = left & 0xFF
        self._buffer[at + 1] = right & 0xFF
        self._write = (self._write + 1) % self.size

    def pending(self) -> int:
        """Distance between the write and read positions, in frames."""
        return abs(self._write - self._read)

    def pull(self, nbytes: int) -> bytes:
        """Return nbytes of interleaved audio, or silence if too little is queued."""
        out = bytearray(nbytes)
        if self.pending() * CHANNELS < nbytes:
            return bytes(out)
        frames = nbytes // CHANNELS
        first = min(frames, self.size - self._read)
        start = self._read * CHANNELS
        out[: first * CHANNELS] = self._buffer[start : start + first * CHANNELS]
        rest = frames - first
        if rest:
            out[first * CHANNELS : frames * CHANNELS] = self._buffer[: rest * CHANNELS]
        self._read = (self._read + frames) % self.size
        return bytes(out)