"""
HC1 Codec Stages — prefix, base45, inflate
============================================

The byte-level stages of the HC1 pipeline. Each stage is a pure function
of its input and returns a fresh object:

  strip_prefix   : str   → Stripped | PrefixWarning   (never raises)
  b45decode      : str   → bytes                      (Base45Error)
  maybe_inflate  : bytes → bytes | None               (InflateError)
"""

import zlib
from typing import Optional

import base45

from hc1_types import (
    URI_SCHEMA, URI_SEPARATOR, BASE45_INDEX, ZLIB_HEADER_BYTE,
    DEFAULT_MAX_INFLATE_SIZE,
    PrefixResult, Stripped, PrefixWarning,
    Base45Error, InvalidCharacterError, InvalidLengthError, ValueOverflowError,
    InflateError,
)


# ═══════════════════════════════════════════════════════════════
# PREFIX
# ═══════════════════════════════════════════════════════════════

def strip_prefix(raw: str, scheme: str = URI_SCHEMA) -> PrefixResult:
    """
    Remove the "HC1:" scheme marker.

    Older encoders emitted the marker without the colon, or no marker at
    all. Both are flagged with a distinct warning; the remaining text is
    still carried on the warning so later stages can decode it.
    """
    if raw.startswith(scheme):
        rest = raw[len(scheme):]
        if rest.startswith(URI_SEPARATOR):
            return Stripped(rest[len(URI_SEPARATOR):])
        return PrefixWarning(f"unsafe {scheme}{URI_SEPARATOR} header from older versions", rest)
    return PrefixWarning(f"no {scheme}{URI_SEPARATOR} header from older versions", raw)


# ═══════════════════════════════════════════════════════════════
# BASE45
# ═══════════════════════════════════════════════════════════════

class Base45Decoder:
    """Base45 text → bytes (RFC 9285)."""

    @staticmethod
    def validate(text: str) -> None:
        """Reject characters outside the alphabet and a single trailing character."""
        for pos, char in enumerate(text):
            if char not in BASE45_INDEX:
                raise InvalidCharacterError(char, pos)
        if len(text) % 3 == 1:
            raise InvalidLengthError(len(text))

    @staticmethod
    def decode(text: str) -> bytes:
        """
        Decode base45 text.

        Every 3 characters c0 c1 c2 give n = c0 + c1*45 + c2*45*45 (<= 65535),
        emitted as two bytes, high then low. A trailing pair gives
        n = c0 + c1*45 (<= 255), emitted as one byte.
        """
        Base45Decoder.validate(text)
        try:
            return base45.b45decode(text)
        except ValueError as e:
            raise Base45Decoder._overflow(text) from e

    @staticmethod
    def _overflow(text: str) -> Base45Error:
        """Locate the group whose value does not fit its byte count."""
        for pos in range(0, len(text), 3):
            group = [BASE45_INDEX[c] for c in text[pos:pos+3]]
            n = sum(v * 45 ** i for i, v in enumerate(group))
            limit = 0xFFFF if len(group) == 3 else 0xFF
            if n > limit:
                return ValueOverflowError(n, limit, pos)
        return Base45Error(f"Invalid base45 string of length {len(text)}")


def b45decode(text: str) -> bytes:
    """Convenience: base45-decode in one call."""
    return Base45Decoder.decode(text)


# ═══════════════════════════════════════════════════════════════
# INFLATE
# ═══════════════════════════════════════════════════════════════

class InflateEngine:
    """Heuristic zlib detection and bounded inflation."""

    def __init__(self, max_output_size: int = DEFAULT_MAX_INFLATE_SIZE):
        self.max_output_size = max_output_size

    @staticmethod
    def is_compressed(data: bytes) -> bool:
        """Only the first byte is checked; the zlib header is not validated."""
        return len(data) > 0 and data[0] == ZLIB_HEADER_BYTE

    def inflate(self, data: bytes) -> bytes:
        """Inflate a zlib stream, bounded by max_output_size."""
        dobj = zlib.decompressobj()
        try:
            out = dobj.decompress(data, self.max_output_size + 1)
        except zlib.error as e:
            raise InflateError(f"Malformed zlib stream: {e}") from e
        if len(out) > self.max_output_size:
            raise InflateError(
                f"Inflated data exceeds {self.max_output_size} bytes"
            )
        if not dobj.eof:
            raise InflateError("Truncated zlib stream")
        return out

    def maybe_inflate(self, data: bytes) -> Optional[bytes]:
        """Inflated bytes, or None when the buffer is not zlib-compressed."""
        if not self.is_compressed(data):
            return None
        return self.inflate(data)

    def payload_bytes(self, data: bytes) -> bytes:
        """Inflated bytes when compressed, otherwise the raw bytes unchanged."""
        inflated = self.maybe_inflate(data)
        return data if inflated is None else inflated
