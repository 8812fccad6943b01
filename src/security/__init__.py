"""Credential protection.

Components:
- derive_key / encrypt / decrypt: PBKDF2 + AES-GCM primitives
- CredentialBlob: Persisted {salt, nonce, ciphertext, iterations}
- revealed_password: Scoped access to a decrypted password
"""

from src.security.cipher import (
    DEFAULT_ITERATIONS,
    CredentialBlob,
    SecretBuffer,
    decrypt,
    derive_key,
    encrypt,
    generate_salt,
    revealed_password,
)

__all__ = [
    "DEFAULT_ITERATIONS",
    "CredentialBlob",
    "SecretBuffer",
    "decrypt",
    "derive_key",
    "encrypt",
    "generate_salt",
    "revealed_password",
]
