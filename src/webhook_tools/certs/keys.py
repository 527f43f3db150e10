# RSA key pairs and their PEM encodings
from __future__ import annotations
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from webhook_tools.certs.errors import EncodingError, KeyGenerationError

# 1024 is the smallest size the backend accepts, fine for tests only
DEFAULT_KEY_BITS = 2048
PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class KeyPair:
    key: rsa.RSAPrivateKey
    public_key: str   # PEM "PUBLIC KEY" (PKIX)
    private_key: str  # PEM "RSA PRIVATE KEY" (PKCS#1)


def encode_public_key(public_key: rsa.RSAPublicKey) -> str:
    try:
        return public_key.public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")
    except ValueError as e:
        raise EncodingError(f"Unable to encode public key: {e}") from e


def encode_private_key(key: rsa.RSAPrivateKey) -> str:
    try:
        return key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,  # PKCS#1
            serialization.NoEncryption(),
        ).decode("ascii")
    except ValueError as e:
        raise EncodingError(f"Unable to encode private key: {e}") from e


def load_private_key(pem: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
    except (ValueError, TypeError) as e:
        raise EncodingError(f"Unable to decode private key: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise EncodingError("Expected an RSA private key")
    return key


def new_key_pair(bit_size: int = DEFAULT_KEY_BITS) -> KeyPair:
    """Generate a fresh RSA key and both of its PEM encodings.

    An unusable ``bit_size`` and backend failures both surface as
    KeyGenerationError; there is no fallback to another size.
    """
    if isinstance(bit_size, bool) or not isinstance(bit_size, int):
        raise KeyGenerationError(f"Key size must be an integer, got {bit_size!r}")
    try:
        key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=bit_size)
    except (ValueError, MemoryError) as e:
        raise KeyGenerationError(f"Unable to generate {bit_size}-bit RSA key: {e}") from e

    return KeyPair(
        key=key,
        public_key=encode_public_key(key.public_key()),
        private_key=encode_private_key(key),
    )
