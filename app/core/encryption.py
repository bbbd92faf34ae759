"""
Symmetric encryption utilities for provider credentials.

Access and refresh tokens must be sent back to the provider, so they are
stored with reversible Fernet encryption rather than hashed.

Key Derivation:
- HKDF with SHA256 derives a stable 32-byte Fernet key from SECRET_KEY
- The same SECRET_KEY always yields the same Fernet key, so stored
  credentials stay decryptable across restarts

Security Notes:
- Changing SECRET_KEY makes every stored credential undecryptable; users
  have to reconnect their providers
- Never log or expose decrypted tokens

Usage:
    from app.core.encryption import encrypt_token, decrypt_token

    encrypted = encrypt_token(credential.access_token)
    original = decrypt_token(encrypted)
"""
import base64
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from app.core.config import settings
from app.core.logging_config import log_error

_fernet_key_cache: Optional[bytes] = None


def _get_fernet_key() -> bytes:
    """Derive (and cache) the Fernet key from the application's SECRET_KEY."""
    global _fernet_key_cache

    if _fernet_key_cache is not None:
        return _fernet_key_cache

    if not settings.secret_key:
        raise ValueError(
            "SECRET_KEY must be set for encryption. "
            "Set it in your .env file or environment variables."
        )

    kdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,  # Fernet requires exactly 32 bytes
        salt=None,
        info=b'connect-hub-provider-credentials'
    )
    derived_key = kdf.derive(settings.secret_key.encode('utf-8'))

    # Fernet expects a URL-safe base64-encoded 32-byte key
    _fernet_key_cache = base64.urlsafe_b64encode(derived_key)
    return _fernet_key_cache


def _get_fernet() -> Fernet:
    return Fernet(_get_fernet_key())


def encrypt_token(token: str) -> str:
    """
    Encrypt a provider token using Fernet symmetric encryption.

    Args:
        token: The plaintext token to encrypt (e.g., OAuth access token)
    """
    if not token or not token.strip():
        raise ValueError("Cannot encrypt empty token")

    try:
        return _get_fernet().encrypt(token.encode('utf-8')).decode('utf-8')
    except Exception as e:
        log_error(e, action="token_encryption")
        raise


def decrypt_token(encrypted_token: str) -> str:
    """
    Decrypt a Fernet-encrypted token.

    Args:
        encrypted_token: The encrypted token (from encrypt_token)
    """
    if not encrypted_token or not encrypted_token.strip():
        raise ValueError("Cannot decrypt empty token")

    try:
        return _get_fernet().decrypt(encrypted_token.encode('utf-8')).decode('utf-8')
    except InvalidToken as e:
        log_error(e, action="token_decryption")
        raise ValueError(
            "Failed to decrypt token. This may indicate the token is corrupted "
            "or the SECRET_KEY has changed. "
            "The user may need to reconnect their integration."
        )
    except Exception as e:
        log_error(e, action="token_decryption")
        raise


def encrypt_optional(token: Optional[str]) -> Optional[str]:
    """Encrypt a token that may legitimately be absent (e.g. refresh tokens)."""
    if not token:
        return None
    return encrypt_token(token)


def decrypt_optional(encrypted_token: Optional[str]) -> Optional[str]:
    if not encrypted_token:
        return None
    return decrypt_token(encrypted_token)


def reset_key_cache():
    """
    Reset the cached Fernet key.

    This should only be called in tests or if SECRET_KEY changes at runtime.
    """
    global _fernet_key_cache
    _fernet_key_cache = None
