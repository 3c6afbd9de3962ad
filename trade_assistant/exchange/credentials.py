"""
Exchange credential handling: encryption at rest, format checks, log masking.

API keys are encrypted with Fernet using a key derived (PBKDF2-HMAC-SHA256)
from the ENCRYPTION_SECRET environment variable. Raw credentials never reach
the logs; use sanitize_for_log() when a key has to be mentioned.

Usage:
    cipher = CredentialCipher(os.environ["ENCRYPTION_SECRET"])
    token = cipher.encrypt(api_key)
    api_key = cipher.decrypt(token)
"""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from loguru import logger

BINANCE_CREDENTIAL_LENGTH = 64
KDF_SALT = b"trade-assistant/credentials/v1"
KDF_ITERATIONS = 480_000


class CredentialError(Exception):
    """Credential encryption, decryption or validation failure."""


class CredentialCipher:
    """Symmetric encryption of exchange credentials.

    Usage:
        cipher = CredentialCipher("a-long-random-secret")
        token = cipher.encrypt("my-api-key")
    """

    def __init__(
        self,
        secret: str,
        min_secret_length: int = 16,
        iterations: int = KDF_ITERATIONS,
    ) -> None:
        if not secret or len(secret) < min_secret_length:
            raise CredentialError(
                f"Encryption secret must be at least {min_secret_length} characters"
            )
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=iterations,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))
        self._fernet = Fernet(key)

    def encrypt(self, text: str) -> str:
        return self._fernet.encrypt(text.encode()).decode()

    def decrypt(self, token: str) -> str:
        """Decrypt a token produced by encrypt().

        Raises:
            CredentialError: If the token is malformed or was encrypted with
                another secret.
        """
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except (InvalidToken, ValueError) as e:
            logger.error("Credentials: decryption failed for {}", sanitize_for_log(token))
            raise CredentialError("Failed to decrypt data") from e


def hash_text(text: str) -> str:
    """One-way SHA-256 hex digest."""
    return hashlib.sha256(text.encode()).hexdigest()


def validate_api_key(api_key: str) -> bool:
    return isinstance(api_key, str) and len(api_key) == BINANCE_CREDENTIAL_LENGTH


def validate_api_secret(api_secret: str) -> bool:
    return isinstance(api_secret, str) and len(api_secret) == BINANCE_CREDENTIAL_LENGTH


def sanitize_for_log(credential: str) -> str:
    """Show only the first and last four characters."""
    if len(credential) <= 8:
        return "****"
    return f"{credential[:4]}...{credential[-4:]}"
