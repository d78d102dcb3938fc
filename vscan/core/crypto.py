"""Encryption of credentials stored at rest (SSH secrets, control-plane passwords).

Fernet with a key derived from ``settings.secret_key`` (SHA-256, base64-urlsafe),
so any process sharing SECRET_KEY can read what another one wrote.
"""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from vscan.core.config import get_settings
from vscan.core.errors import VScanError


def _fernet(secret_key: str | None = None) -> Fernet:
    raw = (secret_key or get_settings().secret_key).encode()
    return Fernet(base64.urlsafe_b64encode(hashlib.sha256(raw).digest()))


def encrypt(value: str, secret_key: str | None = None) -> str:
    """Encrypt *value* and return the token as text."""
    return _fernet(secret_key).encrypt(value.encode()).decode()


def decrypt(token: str, secret_key: str | None = None) -> str:
    """Decrypt a token produced by :func:`encrypt`."""
    try:
        return _fernet(secret_key).decrypt(token.encode()).decode()
    except InvalidToken as exc:
        raise VScanError("credential", "Stored credential cannot be decrypted") from exc
