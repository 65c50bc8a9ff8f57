"""Service-to-service trust tokens.

The two cooperating services authenticate each other without a shared
secret. The issuing side takes a fresh time-ordered UUID and applies its
private RSA key to it with PKCS#1 v1.5 (block type 1) padding, i.e. the
classic "private encrypt" primitive. The receiving side recovers the bytes
with the issuer's public key; getting a well-formed UUID back proves the
token came from the holder of the private key.

Tokens carry no expiry or nonce. Once issued, a token stays valid for as
long as the key pair does.
"""

import base64
import binascii
import math
import os
import secrets
import time
import uuid
from typing import Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from media_queue.config import settings
from media_queue.errors import ErrorKind


# PKCS#1 v1.5 needs at least 8 bytes of 0xFF padding plus three marker bytes
_MIN_PADDING = 11


def _uuid7() -> uuid.UUID:
    """Time-ordered UUID (RFC 9562 version 7): 48-bit unix ms + 74 random bits."""
    unix_ms = time.time_ns() // 1_000_000
    rand = int.from_bytes(os.urandom(10), "big")
    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= ((rand >> 62) & 0xFFF) << 64
    value |= 0b10 << 62
    value |= rand & ((1 << 62) - 1)
    return uuid.UUID(int=value)


def _private_op(numbers: rsa.RSAPrivateNumbers, message: int) -> int:
    """Raw RSA private-key operation, blinded, computed over p and q (CRT)."""
    n = numbers.public_numbers.n
    e = numbers.public_numbers.e
    p, q = numbers.p, numbers.q

    # blinding keeps timing independent of the message being signed
    while True:
        r = secrets.randbelow(n - 2) + 2
        if math.gcd(r, n) == 1:
            break
    blinded = (message * pow(r, e, n)) % n

    s1 = pow(blinded, numbers.dmp1, p)
    s2 = pow(blinded, numbers.dmq1, q)
    h = (numbers.iqmp * (s1 - s2)) % p
    signed = s2 + h * q
    return (signed * pow(r, -1, n)) % n


def _load_pem(encoded: str) -> bytes:
    try:
        return base64.b64decode(encoded.encode(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ErrorKind.SERVER.err(exc, "Error decoding base64 key") from exc


class InterconnectTrust:
    """Issues and verifies interconnect tokens.

    private_key signs outgoing tokens; peer_public_key verifies tokens the
    peer service presents to us. Either may be None when this side only
    issues or only verifies.
    """

    def __init__(
        self,
        private_key: Optional[rsa.RSAPrivateKey],
        peer_public_key: Optional[rsa.RSAPublicKey],
        backend_url: str = "",
        mq_url: str = "",
    ):
        self._private_key = private_key
        self._peer_public_key = peer_public_key
        self._backend_url = backend_url
        self._mq_url = mq_url

    @classmethod
    def from_pem(
        cls,
        private_pem: Optional[bytes],
        public_pem: Optional[bytes],
        backend_url: str = "",
        mq_url: str = "",
    ) -> "InterconnectTrust":
        private_key = None
        public_key = None
        try:
            if private_pem:
                private_key = serialization.load_pem_private_key(private_pem, password=None)
            if public_pem:
                public_key = serialization.load_pem_public_key(public_pem)
        except (ValueError, TypeError) as exc:
            raise ErrorKind.SERVER.err(exc, "Failed to load interconnect RSA key") from exc

        if private_key is not None and not isinstance(private_key, rsa.RSAPrivateKey):
            raise ErrorKind.SERVER.msg("Interconnect private key is not an RSA key")
        if public_key is not None and not isinstance(public_key, rsa.RSAPublicKey):
            raise ErrorKind.SERVER.msg("Interconnect public key is not an RSA key")
        return cls(private_key, public_key, backend_url=backend_url, mq_url=mq_url)

    @classmethod
    def from_settings(cls) -> "InterconnectTrust":
        """Build from base64-encoded PEM keys in the environment."""
        if not settings.interconnect_private_key or not settings.interconnect_public_key:
            raise ErrorKind.SERVER.msg(
                "INTERCONNECT_PRIVATE_KEY and INTERCONNECT_PUBLIC_KEY must be set"
            )
        return cls.from_pem(
            _load_pem(settings.interconnect_private_key),
            _load_pem(settings.interconnect_public_key),
            backend_url=settings.backend_url,
            mq_url=settings.mq_url,
        )

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue(self) -> str:
        """Sign a fresh UUIDv7 with the private key and return it base64 encoded."""
        if self._private_key is None:
            raise ErrorKind.SERVER.msg("No private key configured for issuing tokens")

        numbers = self._private_key.private_numbers()
        modulus = numbers.public_numbers.n
        key_size = (modulus.bit_length() + 7) // 8
        message = _uuid7().bytes
        if len(message) > key_size - _MIN_PADDING:
            raise ErrorKind.SERVER.msg("Interconnect key too small for token payload")

        block = b"\x00\x01" + b"\xff" * (key_size - len(message) - 3) + b"\x00" + message
        signed = _private_op(numbers, int.from_bytes(block, "big"))
        return base64.b64encode(signed.to_bytes(key_size, "big")).decode()

    def verify(self, token: str) -> uuid.UUID:
        """Recover the UUID inside ``token``; any failure is Unauthorized."""
        if self._peer_public_key is None:
            raise ErrorKind.SERVER.msg("No public key configured for verifying tokens")

        try:
            raw = base64.b64decode(token.encode(), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ErrorKind.UNAUTHORIZED.err(exc, "Malformed token") from exc

        try:
            recovered = self._peer_public_key.recover_data_from_signature(
                raw, padding.PKCS1v15(), None
            )
        except (InvalidSignature, ValueError) as exc:
            raise ErrorKind.UNAUTHORIZED.err(exc, "Tampered token") from exc

        if len(recovered) < 16:
            raise ErrorKind.UNAUTHORIZED.msg("Invalid token")
        try:
            return uuid.UUID(bytes=recovered[:16])
        except ValueError as exc:
            raise ErrorKind.UNAUTHORIZED.err(exc, "Invalid token") from exc

    # ------------------------------------------------------------------
    # Peer endpoints
    # ------------------------------------------------------------------

    def backend_uri(self, path: str) -> str:
        return f"{self._backend_url}{path}"

    def mq_uri(self, path: str) -> str:
        return f"{self._mq_url}{path}"


def generate_keypair(bits: int = 4096) -> Tuple[bytes, bytes]:
    """Create a fresh RSA key pair as (public_pem, private_pem)."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return public_pem, private_pem
