"""
HC1 Command Line — decode a payload from text, stdin, or a QR image
=====================================================================

  hc1-decode "HC1:6BF..."              all four views
  hc1-decode --view cose "HC1:6BF..."  one view
  hc1-decode --json "HC1:6BF..."       unwrapped tree as JSON
  hc1-decode --image cert.png          scan the QR code first
  echo "HC1:6BF..." | hc1-decode
"""

import argparse
import logging
import sys
from typing import List, Optional

from hc1_types import (
    URI_SCHEMA, DEFAULT_MAX_DEPTH, Stage, HC1InputError,
)
from hc1_decoder import HC1Decoder

logger = logging.getLogger(__name__)

# Optional: QR scanning from images
try:
    from PIL import Image
    HAS_PIL = True
except ImportError:
    HAS_PIL = False

try:
    from pyzbar.pyzbar import decode as qr_decode
    HAS_PYZBAR = True
except ImportError:
    HAS_PYZBAR = False


def read_qr_image(path: str) -> str:
    """Text of the first QR code found in an image file."""
    if not (HAS_PIL and HAS_PYZBAR):
        raise HC1InputError(
            "QR image input needs Pillow and pyzbar (pip install 'hc1-decoder[image]')"
        )
    try:
        with Image.open(path) as img:
            results = qr_decode(img)
    except OSError as e:
        raise HC1InputError(f"Cannot read image {path}: {e}") from e
    if not results:
        raise HC1InputError(f"No QR code found in {path}")
    if len(results) > 1:
        logger.warning("%d QR codes found in %s, using the first", len(results), path)
    return results[0].data.decode('utf-8').rstrip("\r\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hc1-decode",
        description="Decode an HC1 health certificate QR payload stage by stage.",
    )
    parser.add_argument("payload", nargs="?",
                        help="HC1 payload text (read from stdin when omitted)")
    parser.add_argument("--image", metavar="PATH",
                        help="read the payload from a QR code image")
    parser.add_argument("--view", choices=[s.value for s in Stage],
                        help="print a single view")
    parser.add_argument("--json", action="store_true",
                        help="print the unwrapped CBOR tree as JSON")
    parser.add_argument("--scheme", default=URI_SCHEMA,
                        help="scheme marker (default: %(default)s)")
    parser.add_argument("--max-depth", type=int, default=DEFAULT_MAX_DEPTH,
                        help="nesting bound (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.image:
            raw = read_qr_image(args.image)
        elif args.payload is not None:
            raw = args.payload
        else:
            raw = sys.stdin.read().rstrip("\r\n")
    except HC1InputError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    decoder = HC1Decoder(scheme=args.scheme, max_depth=args.max_depth)

    if args.json:
        print(decoder.after_structured_decode(raw, fmt='json'))
        return 0

    views = decoder.decode_all(raw)
    if args.view:
        print(views[args.view])
        return 0

    for name, text in views.items():
        print(f"{name:<10} {text}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
