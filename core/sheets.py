"""
core/sheets.py -- Sheet-name encoding for per-sheet download URLs.

The analysis backend addresses a worksheet by a URL-safe base64 encoding of
its UTF-8 name. Padding is stripped on encode and restored on decode so the
encoded form is a single clean path segment.
"""

import base64
import binascii


def encode_sheet_name(name: str) -> str:
    return base64.urlsafe_b64encode(name.encode("utf-8")).decode("ascii").rstrip("=")


def decode_sheet_name(encoded: str) -> str:
    """Inverse of encode_sheet_name. Raises ValueError on malformed input."""
    padded = encoded + "=" * (-len(encoded) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError) as exc:
        raise ValueError(f"not a valid encoded sheet name: {encoded!r}") from exc
