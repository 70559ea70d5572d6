"""Credential encryption for ad accounts and session JWT verification.

WHAT:
    Fernet encryption of the Facebook access tokens stored on AdAccount rows,
    and decoding of the `access_token` session cookie.

WHY:
    Keys are read when first needed rather than at import, so tools that only
    touch models or migrations do not need secrets configured. A missing or
    malformed key fails the first encrypt/decrypt/decode with RuntimeError.

    Session tokens are minted by the login service; this backend only
    verifies them.

REFERENCES:
    - backend/snapix/services/ad_account_service.py (encrypts on connect, decrypts on sync)
    - backend/snapix/deps.py (get_current_user)
    - backend/generate_keys.py
"""

import logging
import os
from functools import lru_cache
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken
from jose import jwt

from snapix.utils.env import load_env_file

ALGORITHM = "HS256"

logger = logging.getLogger(__name__)


def _require_env(name: str, hint: str) -> str:
    value = os.getenv(name, "")
    if not value:
        # Dev runs keep secrets in backend/.env
        load_env_file()
        value = os.getenv(name, "")
    if not value:
        raise RuntimeError(f"{name} is not set. {hint}")
    return value


@lru_cache(maxsize=4)
def _cipher_for(key: str) -> Fernet:
    try:
        return Fernet(key)
    except (ValueError, TypeError) as exc:
        raise RuntimeError(
            "TOKEN_ENCRYPTION_KEY must be a URL-safe base64-encoded 32-byte string. "
            "Run backend/generate_keys.py to create one."
        ) from exc


def _cipher() -> Fernet:
    key = _require_env(
        "TOKEN_ENCRYPTION_KEY",
        "Run backend/generate_keys.py or export a Fernet key.",
    )
    return _cipher_for(key)


def encrypt_secret(plaintext: str, *, context: str) -> str:
    """Encrypt an ad-account access token before persisting.

    Args:
        plaintext: Raw Facebook access token.
        context:   Label for logs (user/account); never the secret itself.

    Returns:
        URL-safe base64 ciphertext suitable for DB storage.
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty secret.")

    ciphertext = _cipher().encrypt(plaintext.encode("utf-8")).decode("utf-8")
    logger.info("[TOKEN_ENCRYPT] Secret encrypted for %s (length=%d)", context, len(plaintext))
    return ciphertext


def decrypt_secret(ciphertext: str, *, context: str) -> str:
    """Decrypt a stored access token.

    Raises:
        ValueError: If the stored value is empty or was encrypted under another key.
    """
    if not ciphertext:
        raise ValueError("Cannot decrypt empty secret.")

    try:
        plaintext = _cipher().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        logger.error("[TOKEN_DECRYPT] Invalid ciphertext for %s", context)
        raise ValueError("Unable to decrypt stored token.") from exc

    logger.debug("[TOKEN_DECRYPT] Secret decrypted for %s", context)
    return plaintext


def decode_token(token: str) -> Dict[str, Any]:
    """Verify a session JWT and return its claims.

    Raises jose.JWTError when the signature or expiry is invalid.
    """
    secret = _require_env("JWT_SECRET", "Set it to the login service's signing secret.")
    return jwt.decode(token, secret, algorithms=[ALGORITHM])
