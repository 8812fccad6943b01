"""Authenticated encryption of the stored broker password.

Key derivation: PBKDF2-HMAC-SHA256, 32-byte key, DEFAULT_ITERATIONS rounds,
16-byte random salt stored next to the ciphertext.

Encryption: AES-256-GCM with a fresh 12-byte nonce per encryption. Any change
to ciphertext, nonce, salt or secret makes decryption fail with
DecryptionFailedError instead of returning altered plaintext.

Persisted layout (all byte fields base64):
    credential:
      salt: ...
      nonce: ...
      ciphertext: ...
      iterations: 600000
"""

import base64
import binascii
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from src.utils.exceptions import CredentialError, DecryptionFailedError
from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ITERATIONS = 600_000
KEY_LENGTH = 32
SALT_LENGTH = 16
NONCE_LENGTH = 12


def generate_salt() -> bytes:
    """Random salt for a new credential."""
    return os.urandom(SALT_LENGTH)


def derive_key(secret: str, salt: bytes, iterations: int = DEFAULT_ITERATIONS) -> bytes:
    """Derive a 256-bit key from a user secret.

    The same secret, salt and iteration count always give the same key.

    Args:
        secret: User-supplied secret (passphrase)
        salt: Per-portfolio salt, not secret
        iterations: PBKDF2 work factor

    Returns:
        32-byte key

    Raises:
        ValueError: If the secret is empty, the salt too short or iterations < 1
    """
    if not secret:
        raise ValueError("Secret must not be empty")
    if len(salt) < SALT_LENGTH:
        raise ValueError(f"Salt must be at least {SALT_LENGTH} bytes, got {len(salt)}")
    if iterations < 1:
        raise ValueError(f"iterations must be >= 1, got {iterations}")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, key: bytes) -> Tuple[bytes, bytes]:
    """Encrypt ``plaintext`` with AES-256-GCM.

    Returns:
        (ciphertext, nonce); the ciphertext includes the authentication tag
    """
    nonce = os.urandom(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return ciphertext, nonce


def _decrypt_bytes(ciphertext: bytes, nonce: bytes, key: bytes) -> bytes:
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except (InvalidTag, ValueError) as e:
        raise DecryptionFailedError(
            "Could not decrypt the stored credential: wrong secret or corrupted data"
        ) from e


def decrypt(ciphertext: bytes, nonce: bytes, key: bytes) -> str:
    """Decrypt and authenticate a ciphertext produced by encrypt().

    Raises:
        DecryptionFailedError: On tag mismatch (wrong key or corrupted data)
    """
    return _decrypt_bytes(ciphertext, nonce, key).decode("utf-8")


class SecretBuffer:
    """Mutable holder for decrypted secret bytes that can be wiped.

    Use through revealed_password(), which wipes the buffer on exit.
    """

    def __init__(self, data: bytes):
        self._buffer = bytearray(data)
        self._wiped = False

    def reveal(self) -> str:
        if self.wiped:
            raise CredentialError("Secret has already been wiped")
        return self._buffer.decode("utf-8")

    def wipe(self) -> None:
        for i in range(len(self._buffer)):
            self._buffer[i] = 0
        self._buffer = bytearray()
        self._wiped = True

    @property
    def wiped(self) -> bool:
        return self._wiped

    def __repr__(self) -> str:
        return "SecretBuffer(<redacted>)"


@dataclass(frozen=True)
class CredentialBlob:
    """Encrypted credential as stored in the portfolio file.

    Attributes:
        salt: KDF salt (public)
        nonce: AES-GCM nonce (public)
        ciphertext: Encrypted password with authentication tag
        iterations: KDF work factor used when sealing
    """

    salt: bytes
    nonce: bytes
    ciphertext: bytes
    iterations: int = DEFAULT_ITERATIONS

    @classmethod
    def seal(
        cls,
        password: str,
        secret: str,
        iterations: int = DEFAULT_ITERATIONS,
    ) -> "CredentialBlob":
        """Encrypt ``password`` under a key derived from ``secret`` and a new salt."""
        if not password:
            raise ValueError("Password must not be empty")
        salt = generate_salt()
        key = derive_key(secret, salt, iterations)
        ciphertext, nonce = encrypt(password, key)
        logger.debug("Sealed credential (iterations=%d)", iterations)
        return cls(salt=salt, nonce=nonce, ciphertext=ciphertext, iterations=iterations)

    def reveal(self, secret: str) -> str:
        """Decrypt the password.

        Raises:
            DecryptionFailedError: If the secret is wrong or the blob corrupted
        """
        key = derive_key(secret, self.salt, self.iterations)
        return decrypt(self.ciphertext, self.nonce, key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salt": base64.b64encode(self.salt).decode("ascii"),
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "ciphertext": base64.b64encode(self.ciphertext).decode("ascii"),
            "iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialBlob":
        """Parse the persisted layout.

        Raises:
            ValueError: If a field is missing, not valid base64, too short
                for its role, or the iteration count is below 1
        """
        missing = [k for k in ("salt", "nonce", "ciphertext") if not data.get(k)]
        if missing:
            raise ValueError(f"Credential is missing fields: {', '.join(missing)}")

        try:
            salt = base64.b64decode(data["salt"], validate=True)
            nonce = base64.b64decode(data["nonce"], validate=True)
            ciphertext = base64.b64decode(data["ciphertext"], validate=True)
        except (binascii.Error, TypeError) as e:
            raise ValueError(f"Credential field is not valid base64: {e}") from e

        iterations = int(data.get("iterations", DEFAULT_ITERATIONS))
        if len(salt) < SALT_LENGTH:
            raise ValueError(
                f"Credential salt must be at least {SALT_LENGTH} bytes, got {len(salt)}"
            )
        if len(nonce) != NONCE_LENGTH:
            raise ValueError(
                f"Credential nonce must be {NONCE_LENGTH} bytes, got {len(nonce)}"
            )
        if iterations < 1:
            raise ValueError(f"Credential iterations must be >= 1, got {iterations}")

        return cls(salt=salt, nonce=nonce, ciphertext=ciphertext, iterations=iterations)

    def __repr__(self) -> str:
        return f"CredentialBlob(iterations={self.iterations})"


@contextmanager
def revealed_password(blob: CredentialBlob, secret: str) -> Iterator[SecretBuffer]:
    """Decrypt ``blob`` into a SecretBuffer that is wiped on exit.

    Example:
        >>> with revealed_password(portfolio.credential, secret) as password:
        ...     broker.login(account_id, password.reveal())
    """
    key = derive_key(secret, blob.salt, blob.iterations)
    plaintext = _decrypt_bytes(blob.ciphertext, blob.nonce, key)

    buffer = SecretBuffer(plaintext)
    del plaintext, key
    try:
        yield buffer
    finally:
        buffer.wipe()
