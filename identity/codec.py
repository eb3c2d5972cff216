"""
identity/codec.py -- Compact signed-token decoding (no trust, no verification).

decode_token() splits "<header>.<payload>.<signature>", base64url-decodes each
segment, and parses the first two as JSON objects. Nothing here checks the
signature or any claim -- that is keyring/signature/claims territory.

Any structural problem raises MalformedTokenError:
  - segment count other than exactly three
  - invalid base64url in any segment
  - header/payload that is not UTF-8 JSON, or not a JSON object
  - JSON nested too deeply to parse

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from core.errors import MalformedTokenError
from identity.models import DecodedToken


def b64url_decode(segment: str) -> bytes:
    """Decode an unpadded base64url segment. Raises MalformedTokenError on bad input."""
    try:
        raw = segment.encode("ascii")
    except UnicodeEncodeError as exc:
        raise MalformedTokenError("Token segment contains non-ASCII characters.") from exc
    padded = raw + b"=" * (-len(raw) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MalformedTokenError("Token segment is not valid base64url.") from exc


def _decode_json_segment(segment: str, label: str) -> dict[str, Any]:
    raw = b64url_decode(segment)
    try:
        value = json.loads(raw.decode("utf-8"))
    except (ValueError, RecursionError) as exc:
        # ValueError covers UnicodeDecodeError and JSONDecodeError; deep nesting
        # exhausts the parser stack.
        raise MalformedTokenError(f"Token {label} is not valid JSON.") from exc
    if not isinstance(value, dict):
        raise MalformedTokenError(f"Token {label} is not a JSON object.")
    return value


def decode_token(token: str) -> DecodedToken:
    """Decode a compact token string into header, payload, and signature bytes."""
    if not isinstance(token, str):
        raise MalformedTokenError("Token must be a string.")
    parts = token.split(".")
    if len(parts) != 3:
        raise MalformedTokenError(f"Invalid token structure: expected 3 segments, got {len(parts)}.")

    header_b64, payload_b64, signature_b64 = parts
    header = _decode_json_segment(header_b64, "header")
    payload = _decode_json_segment(payload_b64, "payload")
    signature = b64url_decode(signature_b64)

    return DecodedToken(
        header=header,
        payload=payload,
        signature=signature,
        signing_input=f"{header_b64}.{payload_b64}".encode("ascii"),
    )
