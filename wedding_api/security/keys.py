"""RSA key material for signing and verifying credentials."""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

SUPPORTED_ALGORITHMS = frozenset({"RS256", "RS384", "RS512"})


class KeyMaterialError(ValueError):
    """Raised when PEM text cannot be turned into a usable keypair."""


@dataclass(frozen=True)
class KeyPair:
    """Private signer and public verifier for one asymmetric algorithm."""

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey
    algorithm: str = "RS256"

    @classmethod
    def from_pem(
        cls,
        private_pem: str | bytes,
        public_pem: str | bytes | None = None,
        *,
        algorithm: str = "RS256",
    ) -> "KeyPair":
        """Parse PEM text; the public key is derived when not supplied."""
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise KeyMaterialError(f"Unsupported signing algorithm: {algorithm}")

        private_key = load_private_key(private_pem)
        derived_public = private_key.public_key()
        if public_pem:
            public_key = load_public_key(public_pem)
            if public_key.public_numbers() != derived_public.public_numbers():
                raise KeyMaterialError("Public key does not match private key")
        else:
            public_key = derived_public
        return cls(private_key=private_key, public_key=public_key, algorithm=algorithm)

    @classmethod
    def generate(cls, *, bits: int = 2048, algorithm: str = "RS256") -> "KeyPair":
        """Create a fresh keypair, used by tests and development bootstrap."""
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        return cls(
            private_key=private_key,
            public_key=private_key.public_key(),
            algorithm=algorithm,
        )

    def private_pem(self) -> str:
        """Serialize the private key as PKCS#8 PEM."""
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ).decode("utf-8")

    def public_pem(self) -> str:
        """Serialize the public key as SubjectPublicKeyInfo PEM."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")


def _as_bytes(pem: str | bytes) -> bytes:
    return pem.encode("utf-8") if isinstance(pem, str) else pem


def load_private_key(pem: str | bytes) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key in PKCS#8 or legacy PKCS#1 form."""
    try:
        key = serialization.load_pem_private_key(_as_bytes(pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyMaterialError("Failed to parse private key PEM") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyMaterialError("Private key is not an RSA key")
    return key


def load_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Load an RSA public key in SubjectPublicKeyInfo or legacy PKCS#1 form."""
    try:
        key = serialization.load_pem_public_key(_as_bytes(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyMaterialError("Failed to parse public key PEM") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyMaterialError("Public key is not an RSA key")
    return key
