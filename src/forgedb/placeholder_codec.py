"""Base64 placeholder used by ``encrypt_sensitive_data``/``decrypt_sensitive_data``.

THIS IS NOT ENCRYPTION. The schema's "encrypt" functions only base64-encode
UTF-8 text: there is no key and no cipher, and anyone with read access can
recover the plaintext. This module reproduces that encoding so existing
rows can be read and written consistently. Do not use it to protect
secrets; real protection needs an authenticated-encryption primitive.

Decoding reports *why* it produced no value instead of collapsing every
problem into an empty string.
"""

from __future__ import annotations

import base64
import binascii
import enum
from dataclasses import dataclass


class DecodeStatus(enum.StrEnum):
    OK = "ok"
    EMPTY = "empty"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class DecodeResult:
    status: DecodeStatus
    value: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is DecodeStatus.OK


def encode_placeholder(text: str) -> str:
    """Base64-encode *text* the way ``encrypt_sensitive_data`` does."""
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def decode_placeholder(data: str | None) -> DecodeResult:
    """Reverse :func:`encode_placeholder`.

    ``None`` or blank input yields ``EMPTY``; invalid base64 or bytes that are
    not UTF-8 yield ``MALFORMED`` with the reason in ``error``.
    """
    if data is None or not data.strip():
        return DecodeResult(DecodeStatus.EMPTY)
    # PostgreSQL's encode(..., 'base64') wraps lines at 76 characters.
    compact = "".join(data.split())
    try:
        raw = base64.b64decode(compact, validate=True)
        value = raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        return DecodeResult(DecodeStatus.MALFORMED, error=str(exc))
    return DecodeResult(DecodeStatus.OK, value=value)
