"""
HC1 Types & Constants — Health Certificate QR Payload Decoder
==============================================================

Foundational constants, result types, and error classes shared by every
stage of the HC1 decoding pipeline:

  HC1:<base45 text>  →  bytes  →  (zlib inflate)  →  CBOR  →  hex

Standards consumed (not designed here):
  - Base45 alphabet and grouping (RFC 9285)
  - zlib framing around DEFLATE (RFC 1950 / RFC 1951)
  - CBOR, the structured binary format of the COSE envelope (RFC 8949)
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Union

# ═══════════════════════════════════════════════════════════════
# SCHEME & FORMAT CONSTANTS
# ═══════════════════════════════════════════════════════════════

# Scheme marker in front of the base45 payload ("HC1:...")
URI_SCHEMA = "HC1"
URI_SEPARATOR = ":"

# Base45 alphabet, values 0..44 by position
BASE45_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ $%*+-./:"
BASE45_INDEX = {c: i for i, c in enumerate(BASE45_ALPHABET)}

# Leading byte of a zlib stream at the default compression level.
# The payload carries no compression flag; this byte is the only signal.
ZLIB_HEADER_BYTE = 0x78

# Nesting bound for containers and nested envelopes
DEFAULT_MAX_DEPTH = 32

# Upper bound on a single inflated buffer (4 MiB)
DEFAULT_MAX_INFLATE_SIZE = 4 * 1024 * 1024


class Stage(str, Enum):
    """Observation points of the pipeline, one per output view."""
    PREFIX     = "prefix"
    BASE45     = "base45"
    INFLATE    = "inflate"
    STRUCTURED = "structured"


# ═══════════════════════════════════════════════════════════════
# PREFIX RESULTS
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Stripped:
    """The scheme marker and separator were present and removed."""
    payload: str

    def render(self) -> str:
        return self.payload


@dataclass(frozen=True)
class PrefixWarning:
    """
    Input from an older encoder: marker without separator, or no marker.

    `payload` is the text the later stages decode anyway (the remainder
    after the bare marker, or the whole input when there is no marker).
    """
    message: str
    payload: str = ""

    def render(self) -> str:
        return f"Warning: {self.message}"


PrefixResult = Union[Stripped, PrefixWarning]


# ═══════════════════════════════════════════════════════════════
# ERROR CLASSES
# ═══════════════════════════════════════════════════════════════

class HC1Error(Exception):
    """Base error for all HC1 decoding operations."""
    kind = "HC1Error"

class Base45Error(HC1Error):
    """Base45 text could not be decoded."""
    kind = "Base45Error"

class InvalidCharacterError(Base45Error):
    """A character outside the base45 alphabet."""
    kind = "InvalidCharacter"

    def __init__(self, char: str, position: int):
        super().__init__(f"Invalid base45 character {char!r} at position {position}")
        self.char = char
        self.position = position

class InvalidLengthError(Base45Error):
    """Trailing characters do not form a 2- or 3-character group."""
    kind = "InvalidLength"

    def __init__(self, length: int):
        super().__init__(f"Invalid base45 length {length}: a single trailing character")
        self.length = length

class ValueOverflowError(Base45Error):
    """A group encodes a value too large for its byte count."""
    kind = "ValueOverflow"

    def __init__(self, value: int, limit: int, position: int):
        super().__init__(
            f"Base45 group at position {position} decodes to {value}, "
            f"above the limit {limit}"
        )
        self.value = value
        self.limit = limit
        self.position = position

class InflateError(HC1Error):
    """Malformed or oversized zlib stream."""
    kind = "InflateFailed"

class StructuredParseError(HC1Error):
    """Bytes are not a single well-formed CBOR item."""
    kind = "StructuredParseError"

class TooDeepError(HC1Error):
    """Nesting exceeded the configured depth guard."""
    kind = "TooDeep"

    def __init__(self, max_depth: int):
        super().__init__(f"Nesting deeper than {max_depth} levels")
        self.max_depth = max_depth

class HC1InputError(HC1Error):
    """Payload could not be read from the given input source."""
    kind = "InputError"


# ═══════════════════════════════════════════════════════════════
# UTILITY FUNCTIONS
# ═══════════════════════════════════════════════════════════════

def buf2hex(data: bytes) -> str:
    """Lowercase hex, two digits per byte."""
    return bytes(data).hex()

def diagnostic(err: HC1Error, stage: Stage) -> str:
    """Render a stage failure as a JSON diagnostic string."""
    return json.dumps({
        'error': err.kind,
        'stage': stage.value,
        'message': str(err),
    })
