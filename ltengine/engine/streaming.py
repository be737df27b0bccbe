"""Incremental bytes -> text conversion for token streams."""

from __future__ import annotations

import codecs
import logging

logger = logging.getLogger(__name__)


class StreamingDecoder:
    """Turns per-token byte pieces into text without splitting characters.

    A single token may carry only part of a multi-byte UTF-8 character. Those
    bytes are held back until a later token completes the character, so the
    returned fragments always consist of whole characters.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    @property
    def pending(self) -> int:
        """Number of buffered bytes waiting for the rest of their character."""
        buffered, _ = self._decoder.getstate()
        return len(buffered)

    def feed(self, data: bytes) -> str:
        if not data:
            return ""
        return self._decoder.decode(data, final=False)

    def finish(self) -> None:
        """End of stream. An incomplete trailing character is dropped, never emitted."""
        dropped = self.pending
        if dropped:
            logger.debug("Dropping %d trailing bytes of an incomplete character", dropped)
        self._decoder.reset()
