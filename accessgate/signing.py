"""
RSA key provider for audit batch signatures (RSA-SHA256, PKCS#1 v1.5).
"""

import base64
import logging
import os
from typing import Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from accessgate.errors import IntegrityFailure


logger = logging.getLogger(__name__)

SIGNATURE_ALGORITHM = "RSA-SHA256"


class SigningKeyProvider:
    """
    Holds the key pair used by the ledger.

    Either key may be absent: a verifier-only deployment loads just the
    public key. Using a missing key raises IntegrityFailure.

    Example:
        signer = SigningKeyProvider.from_env()
        signature = signer.sign(b"payload")
        assert signer.verify(b"payload", signature)
    """

    def __init__(
        self,
        private_key: Optional[rsa.RSAPrivateKey] = None,
        public_key: Optional[rsa.RSAPublicKey] = None,
        key_id: str = "default",
    ) -> None:
        if public_key is None and private_key is not None:
            public_key = private_key.public_key()
        self._private_key = private_key
        self._public_key = public_key
        self.key_id = key_id

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    @property
    def can_verify(self) -> bool:
        return self._public_key is not None

    @classmethod
    def from_pem(
        cls,
        private_pem: Optional[bytes | str] = None,
        public_pem: Optional[bytes | str] = None,
        key_id: str = "default",
    ) -> "SigningKeyProvider":
        private_key = None
        public_key = None
        if private_pem:
            if isinstance(private_pem, str):
                private_pem = private_pem.encode()
            private_key = serialization.load_pem_private_key(private_pem, password=None)
            if not isinstance(private_key, rsa.RSAPrivateKey):
                raise IntegrityFailure("Signing key is not an RSA private key")
        if public_pem:
            if isinstance(public_pem, str):
                public_pem = public_pem.encode()
            public_key = serialization.load_pem_public_key(public_pem)
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise IntegrityFailure("Verification key is not an RSA public key")
        return cls(private_key=private_key, public_key=public_key, key_id=key_id)

    @classmethod
    def from_env(
        cls,
        private_var: str = "SIGNING_PRIVATE_KEY",
        public_var: str = "SIGNING_PUBLIC_KEY",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "SigningKeyProvider":
        """Load PEM keys from environment variables; literal "\\n" sequences are unescaped."""
        env = os.environ if environ is None else environ
        private_pem = env.get(private_var)
        public_pem = env.get(public_var)
        if private_pem:
            private_pem = private_pem.replace("\\n", "\n")
        if public_pem:
            public_pem = public_pem.replace("\\n", "\n")
        if not private_pem and not public_pem:
            logger.warning(f"No signing keys found in {private_var}/{public_var}")
        return cls.from_pem(private_pem, public_pem, key_id=private_var)

    @classmethod
    def generate(cls, bits: int = 2048, key_id: str = "generated") -> "SigningKeyProvider":
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        return cls(private_key=private_key, key_id=key_id)

    def sign(self, data: bytes) -> str:
        """Sign data and return the base64 signature."""
        if self._private_key is None:
            raise IntegrityFailure("Private signing key not configured")
        signature = self._private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    def verify(self, data: bytes, signature: str) -> bool:
        if self._public_key is None:
            raise IntegrityFailure("Public verification key not configured")
        try:
            self._public_key.verify(
                base64.b64decode(signature),
                data,
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except (InvalidSignature, ValueError):
            return False
        return True

    def public_pem(self) -> bytes:
        if self._public_key is None:
            raise IntegrityFailure("Public verification key not configured")
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def private_pem(self) -> bytes:
        if self._private_key is None:
            raise IntegrityFailure("Private signing key not configured")
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
