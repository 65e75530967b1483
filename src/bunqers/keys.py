"""Device signing keys: RSA generation, PEM encoding and body signatures."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from bunqers.errors import KeyFormatError, KeyGenerationError

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _from_b64(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


def sign(private_key: rsa.RSAPrivateKey, body: bytes) -> str:
    signature = private_key.sign(body, padding.PKCS1v15(), hashes.SHA256())
    return _b64(signature)


def verify(public_key: rsa.RSAPublicKey, body: bytes, signature: str) -> bool:
    try:
        raw = _from_b64(signature.strip())
        public_key.verify(raw, body, padding.PKCS1v15(), hashes.SHA256())
    except (InvalidSignature, binascii.Error, ValueError):
        return False
    return True


@dataclass(frozen=True, eq=False)
class KeyPair:
    """The device's signing key. Only :attr:`public_pem` is ever sent."""

    private_key: rsa.RSAPrivateKey

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.private_key.public_key()

    @property
    def public_pem(self) -> str:
        return to_pem(self.public_key)

    @property
    def private_pem(self) -> str:
        return to_pem(self.private_key)

    def sign(self, body: bytes) -> str:
        return sign(self.private_key, body)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyPair):
            return NotImplemented
        return self.private_key.private_numbers() == other.private_key.private_numbers()

    def __repr__(self) -> str:
        return f"KeyPair(bits={self.private_key.key_size})"


@dataclass(frozen=True, eq=False)
class ServerPublicKey:
    """The server's verification key, learned during installation."""

    public_key: rsa.RSAPublicKey

    @property
    def pem(self) -> str:
        return to_pem(self.public_key)

    def verify(self, body: bytes, signature: str) -> bool:
        return verify(self.public_key, body, signature)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServerPublicKey):
            return NotImplemented
        return self.public_key.public_numbers() == other.public_key.public_numbers()

    def __repr__(self) -> str:
        return f"ServerPublicKey(bits={self.public_key.key_size})"


PemSource = Union[KeyPair, ServerPublicKey, rsa.RSAPrivateKey, rsa.RSAPublicKey]


def generate() -> KeyPair:
    try:
        private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)
    except (ValueError, UnsupportedAlgorithm) as error:
        raise KeyGenerationError(f"Failed to generate RSA key: {error}") from error
    return KeyPair(private_key)


def to_pem(key: PemSource) -> str:
    if isinstance(key, KeyPair):
        key = key.private_key
    elif isinstance(key, ServerPublicKey):
        key = key.public_key

    if isinstance(key, rsa.RSAPrivateKey):
        encoded = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    elif isinstance(key, rsa.RSAPublicKey):
        encoded = key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    else:
        raise TypeError(f"Unsupported key type: {type(key).__name__}")
    return encoded.decode("ascii")


def private_key_from_pem(text: str) -> KeyPair:
    try:
        key = serialization.load_pem_private_key(text.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as error:
        raise KeyFormatError(f"Invalid private key PEM: {error}") from error
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyFormatError(f"Expected an RSA private key, got {type(key).__name__}")
    return KeyPair(key)


def public_key_from_pem(text: str) -> ServerPublicKey:
    try:
        key = serialization.load_pem_public_key(text.encode("utf-8"))
    except (ValueError, UnsupportedAlgorithm) as error:
        raise KeyFormatError(f"Invalid public key PEM: {error}") from error
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyFormatError(f"Expected an RSA public key, got {type(key).__name__}")
    return ServerPublicKey(key)
