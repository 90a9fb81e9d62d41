"""
HC1 Decoder — Health Certificate QR Payload Decoder
=====================================================

Decodes "HC1:" QR payloads (EU Digital COVID Certificate style) down to
their CBOR structure and exposes each intermediate stage as a string view:

  prefix_only              : payload text after the scheme marker, or a warning
  after_base45             : hex of the base45-decoded bytes
  after_inflate            : hex of the inflated bytes ("" when not compressed)
  after_structured_decode  : hex of the canonical CBOR of the unwrapped tree

Byte strings found inside the CBOR tree are treated as possible nested
payloads and run through the same pipeline again, bounded by a depth guard.

Signatures are not verified and certificate fields are not interpreted.
"""

import base64
import io
import json
import logging
from collections import Counter
from collections.abc import Mapping, MutableMapping
from typing import Any, Dict, Optional

import cbor2

from hc1_types import (
    URI_SCHEMA, DEFAULT_MAX_DEPTH, DEFAULT_MAX_INFLATE_SIZE,
    Stage, PrefixResult,
    HC1Error, StructuredParseError, TooDeepError,
    buf2hex, diagnostic,
)
from hc1_codec import strip_prefix, b45decode, InflateEngine

logger = logging.getLogger(__name__)

# Any value cbor2 can produce: bytes, str, int, list, dict, CBORTag, ...
DecodedValue = Any

RENDER_FORMATS = ('hex', 'json')


# ═══════════════════════════════════════════════════════════════
# STRUCTURED DECODER
# ═══════════════════════════════════════════════════════════════

class StructuredDecoder:
    """
    CBOR decoding plus recursive unwrapping of nested payloads.

    Usage:
        sd = StructuredDecoder(max_depth=8)
        tree = sd.unwrap_nested(sd.decode_structured(data))
        print(sd.render(tree))
    """

    def __init__(self,
                 max_depth: int = DEFAULT_MAX_DEPTH,
                 scheme: str = URI_SCHEMA,
                 inflater: Optional[InflateEngine] = None):
        self.max_depth = max_depth
        self.scheme = scheme
        self.inflater = inflater or InflateEngine()

    # ─── Parsing ──────────────────────────────────────────────

    def decode_structured(self, data: bytes) -> DecodedValue:
        """Parse exactly one CBOR item; trailing bytes are an error."""
        if not data:
            raise StructuredParseError("Empty CBOR input")
        with io.BytesIO(data) as fp:
            try:
                value = cbor2.CBORDecoder(fp).decode()
            except RecursionError as e:
                raise TooDeepError(self.max_depth) from e
            except (cbor2.CBORDecodeError, ValueError, EOFError) as e:
                if 'nesting depth' in str(e):
                    raise TooDeepError(self.max_depth) from e
                raise StructuredParseError(f"Invalid CBOR: {e}") from e
            if fp.tell() != len(data):
                raise StructuredParseError(
                    f"Trailing data after CBOR item: {len(data) - fp.tell()} bytes"
                )
        return value

    def decode_payload(self, text: str, depth: int = 0) -> DecodedValue:
        """
        Run the whole pipeline on base45 text and unwrap the result.

        Uncompressed bytes are parsed as they are; compressed bytes are
        inflated first.
        """
        if depth > self.max_depth:
            raise TooDeepError(self.max_depth)
        data = b45decode(strip_prefix(text, self.scheme).payload)
        value = self.decode_structured(self.inflater.payload_bytes(data))
        return self.unwrap_nested(value, depth)

    # ─── Unwrapping ───────────────────────────────────────────

    def unwrap_nested(self, value: DecodedValue, depth: int = 0) -> DecodedValue:
        """
        Return a new tree with every byte string replaced by its decoded
        nested payload, or by its base64 text when it is not one.

        Each container level and each nested payload counts one level
        of depth. TooDeepError is never absorbed by the base64 fallback.
        """
        if depth > self.max_depth:
            raise TooDeepError(self.max_depth)

        if isinstance(value, (bytes, bytearray)):
            return self._unwrap_bytes(bytes(value), depth)
        if isinstance(value, cbor2.CBORSimpleValue):
            return value
        if isinstance(value, (list, tuple)):
            return [self.unwrap_nested(item, depth + 1) for item in value]
        if isinstance(value, Mapping):
            return self._unwrap_map(value, depth)
        if isinstance(value, cbor2.CBORTag):
            return cbor2.CBORTag(value.tag, self.unwrap_nested(value.value, depth + 1))
        return value

    def _unwrap_map(self, value: Mapping, depth: int) -> dict:
        # A byte-string key that falls back to base64 may equal an existing
        # text key; colliding keys keep their original form.
        entries = [
            (k, _hashable(self.unwrap_nested(k, depth + 1)), self.unwrap_nested(v, depth + 1))
            for k, v in value.items()
        ]
        counts = Counter(key for _, key, _ in entries)
        return {
            (key if counts[key] == 1 else original): v
            for original, key, v in entries
        }

    def _unwrap_bytes(self, data: bytes, depth: int) -> DecodedValue:
        try:
            return self.decode_payload(data.decode('ascii'), depth + 1)
        except TooDeepError:
            raise
        except (HC1Error, UnicodeDecodeError) as e:
            logger.debug("Byte string of %d bytes is not a nested payload: %s", len(data), e)
            return base64.b64encode(data).decode('ascii')

    # ─── Rendering ────────────────────────────────────────────

    @staticmethod
    def render(value: DecodedValue, fmt: str = 'hex') -> str:
        """Hex of the canonical CBOR encoding, or JSON text."""
        if fmt == 'json':
            return json.dumps(to_json_safe(value), ensure_ascii=False, default=str)
        if fmt != 'hex':
            raise ValueError(f"Unknown render format {fmt!r}, expected one of {RENDER_FORMATS}")
        try:
            return buf2hex(cbor2.dumps(value, canonical=True))
        except (cbor2.CBOREncodeError, TypeError, ValueError) as e:
            raise StructuredParseError(f"Cannot re-encode decoded value: {e}") from e


def _hashable(key: DecodedValue) -> DecodedValue:
    """Map keys must stay hashable after unwrapping."""
    if isinstance(key, list):
        return tuple(_hashable(k) for k in key)
    if isinstance(key, dict):
        return cbor2.FrozenDict({k: _hashable(v) for k, v in key.items()})
    if isinstance(key, cbor2.CBORTag):
        return cbor2.CBORTag(key.tag, _hashable(key.value))
    return key


def to_json_safe(value: DecodedValue) -> Any:
    """Convert a decoded tree into something json.dumps accepts."""
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if isinstance(value, cbor2.CBORSimpleValue):
        return {'simple': value.value}
    if isinstance(value, (list, tuple)):
        return [to_json_safe(v) for v in value]
    if isinstance(value, Mapping):
        return {
            k if isinstance(k, str) else json.dumps(to_json_safe(k), default=str): to_json_safe(v)
            for k, v in value.items()
        }
    if isinstance(value, cbor2.CBORTag):
        return {'tag': value.tag, 'value': to_json_safe(value.value)}
    return value


# ═══════════════════════════════════════════════════════════════
# PIPELINE FACADE
# ═══════════════════════════════════════════════════════════════

class HC1Decoder:
    """
    HC1 pipeline facade.

    Every view re-runs the earlier stages from the raw input and turns a
    stage failure into a JSON diagnostic string, so one failing view
    never prevents the others from being produced.

    Usage:
        decoder = HC1Decoder()
        decoder.after_base45("HC1:6BF...")      # hex string
        decoder.decode_all("HC1:6BF...")        # all four views
        tree = decoder.decode("HC1:6BF...")     # raises HC1Error
    """

    def __init__(self,
                 scheme: str = URI_SCHEMA,
                 max_depth: int = DEFAULT_MAX_DEPTH,
                 max_output_size: int = DEFAULT_MAX_INFLATE_SIZE):
        self.scheme = scheme
        self.inflater = InflateEngine(max_output_size=max_output_size)
        self.structured = StructuredDecoder(
            max_depth=max_depth, scheme=scheme, inflater=self.inflater
        )

    # ─── Stages (raise HC1Error) ──────────────────────────────

    def strip(self, raw: str) -> PrefixResult:
        return strip_prefix(raw, self.scheme)

    def base45_bytes(self, raw: str) -> bytes:
        return b45decode(self.strip(raw).payload)

    def inflated_bytes(self, raw: str) -> Optional[bytes]:
        return self.inflater.maybe_inflate(self.base45_bytes(raw))

    def decode(self, raw: str) -> DecodedValue:
        """Fully unwrapped CBOR tree of the payload."""
        return self.structured.decode_payload(raw)

    # ─── Views (never raise HC1Error) ─────────────────────────

    def prefix_only(self, raw: str) -> str:
        return self.strip(raw).render()

    def after_base45(self, raw: str) -> str:
        try:
            return buf2hex(self.base45_bytes(raw))
        except HC1Error as e:
            return self._report(e, Stage.BASE45)

    def after_inflate(self, raw: str) -> str:
        """Hex of the inflated bytes; empty when the payload is not compressed."""
        try:
            inflated = self.inflated_bytes(raw)
        except HC1Error as e:
            return self._report(e, Stage.INFLATE)
        return "" if inflated is None else buf2hex(inflated)

    def after_structured_decode(self, raw: str, fmt: str = 'hex') -> str:
        try:
            return self.structured.render(self.decode(raw), fmt)
        except HC1Error as e:
            return self._report(e, Stage.STRUCTURED)

    def decode_all(self, raw: str) -> Dict[str, str]:
        return {
            Stage.PREFIX.value: self.prefix_only(raw),
            Stage.BASE45.value: self.after_base45(raw),
            Stage.INFLATE.value: self.after_inflate(raw),
            Stage.STRUCTURED.value: self.after_structured_decode(raw),
        }

    @staticmethod
    def _report(err: HC1Error, stage: Stage) -> str:
        logger.debug("Stage %s failed: %s", stage.value, err)
        return diagnostic(err, stage)


# ═══════════════════════════════════════════════════════════════
# PRESENTATION ADAPTER
# ═══════════════════════════════════════════════════════════════

# Output slot name → facade view
SLOT_VIEWS = (
    ('qrBase45', 'prefix_only'),
    ('compressed', 'after_base45'),
    ('cose', 'after_inflate'),
    ('cbor', 'after_structured_decode'),
)

def show_result(raw: str,
                slots: MutableMapping,
                decoder: Optional[HC1Decoder] = None) -> MutableMapping:
    """
    Write each view into its named slot. Slots absent from the mapping
    are skipped and their views are not computed.
    """
    decoder = decoder or HC1Decoder()
    for slot, view in SLOT_VIEWS:
        if slot in slots:
            slots[slot] = getattr(decoder, view)(raw or "")
    return slots


# ═══════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ═══════════════════════════════════════════════════════════════

def prefix_only(raw: str) -> str:
    """Convenience: prefix view in one call."""
    return HC1Decoder().prefix_only(raw)

def after_base45(raw: str) -> str:
    """Convenience: base45 view in one call."""
    return HC1Decoder().after_base45(raw)

def after_inflate(raw: str) -> str:
    """Convenience: inflate view in one call."""
    return HC1Decoder().after_inflate(raw)

def after_structured_decode(raw: str, max_depth: int = DEFAULT_MAX_DEPTH) -> str:
    """Convenience: structured view in one call."""
    return HC1Decoder(max_depth=max_depth).after_structured_decode(raw)
