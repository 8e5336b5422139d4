"""Field-level encryption for sensitive record attributes.

Ciphertexts use the OpenSSL "Salted__" envelope (EVP_BytesToKey with MD5,
AES-256-CBC, PKCS7, base64), which is the format the web client has always
written, so existing records stay readable.

The key is the user ID joined with a static application secret. That is a
plain string concatenation rather than a key-derivation function: anyone
holding the application secret and a user ID can derive that user's key.
"""

import base64
import binascii
import logging
import secrets
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.core.config import settings


logger = logging.getLogger(__name__)

_SALT_HEADER = b"Salted__"
_SALT_LEN = 8
_KEY_LEN = 32
_IV_LEN = 16
_BLOCK_BYTES = 16


class DecryptOutcome(StrEnum):
    """How a stored field value was interpreted on read."""

    DECRYPTED = "decrypted"
    PLAINTEXT = "plaintext"  # not a ciphertext envelope, e.g. written before encryption existed
    CORRUPTED = "corrupted"  # envelope present but undecryptable with this key


@dataclass(frozen=True)
class DecryptResult:
    """Decrypted value together with the outcome that produced it."""

    value: str
    outcome: DecryptOutcome


def _evp_bytes_to_key(passphrase: bytes, salt: bytes) -> tuple[bytes, bytes]:
    """Derive key and IV the way OpenSSL's EVP_BytesToKey does (MD5, one iteration)."""
    derived = b""
    block = b""
    while len(derived) < _KEY_LEN + _IV_LEN:
        digest = hashes.Hash(hashes.MD5())
        digest.update(block + passphrase + salt)
        block = digest.finalize()
        derived += block
    return derived[:_KEY_LEN], derived[_KEY_LEN : _KEY_LEN + _IV_LEN]


class FieldCodec:
    """Encrypts and decrypts individual string fields with a per-user key."""

    def __init__(self, app_secret: str | None = None) -> None:
        self._app_secret = app_secret if app_secret is not None else settings.app_secret

    def key_for(self, user_id: str) -> str:
        return f"{user_id}-{self._app_secret}"

    def encrypt_field(self, value: str, user_id: str) -> str:
        """Encrypt a single value. Empty values pass through unchanged."""
        if not value:
            return value

        salt = secrets.token_bytes(_SALT_LEN)
        key, iv = _evp_bytes_to_key(self.key_for(user_id).encode("utf-8"), salt)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(value.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return base64.b64encode(_SALT_HEADER + salt + ciphertext).decode("ascii")

    def decrypt_field_result(self, value: str, user_id: str) -> DecryptResult:
        """Decrypt a single value and report how it was interpreted."""
        if not value:
            return DecryptResult(value=value, outcome=DecryptOutcome.PLAINTEXT)

        try:
            raw = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            return DecryptResult(value=value, outcome=DecryptOutcome.PLAINTEXT)

        if not raw.startswith(_SALT_HEADER):
            return DecryptResult(value=value, outcome=DecryptOutcome.PLAINTEXT)

        body = raw[len(_SALT_HEADER) + _SALT_LEN :]
        if not body or len(body) % _BLOCK_BYTES:
            return DecryptResult(value=value, outcome=DecryptOutcome.CORRUPTED)

        salt = raw[len(_SALT_HEADER) : len(_SALT_HEADER) + _SALT_LEN]
        key, iv = _evp_bytes_to_key(self.key_for(user_id).encode("utf-8"), salt)

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(body) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return DecryptResult(value=value, outcome=DecryptOutcome.CORRUPTED)

        if not plaintext:
            return DecryptResult(value=value, outcome=DecryptOutcome.CORRUPTED)

        return DecryptResult(value=plaintext, outcome=DecryptOutcome.DECRYPTED)

    def decrypt_field(self, value: str, user_id: str) -> str:
        """Decrypt a single value, returning the input unchanged if it cannot be decrypted."""
        result = self.decrypt_field_result(value, user_id)
        if result.outcome is DecryptOutcome.CORRUPTED:
            logger.debug("Undecryptable field value treated as plaintext", extra={"user_id": user_id})
        return result.value

    def encrypt_fields(self, record: Mapping[str, Any], user_id: str, fields: Iterable[str]) -> dict[str, Any]:
        """Return a copy of ``record`` with the listed string fields encrypted."""
        encrypted = dict(record)
        for field in fields:
            if isinstance(encrypted.get(field), str):
                encrypted[field] = self.encrypt_field(encrypted[field], user_id)
        return encrypted

    def decrypt_fields(self, record: Mapping[str, Any], user_id: str, fields: Iterable[str]) -> dict[str, Any]:
        """Return a copy of ``record`` with the listed string fields decrypted."""
        decrypted = dict(record)
        for field in fields:
            if isinstance(decrypted.get(field), str):
                decrypted[field] = self.decrypt_field(decrypted[field], user_id)
        return decrypted
