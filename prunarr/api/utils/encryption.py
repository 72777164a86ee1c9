"""Encryption utilities for integration credentials stored in the config file"""

import os
import base64
import binascii
import logging
from pathlib import Path
from typing import Optional
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

UNENCRYPTED_PREFIX = "UNENCRYPTED:"


class EncryptionService:
    """Service for encrypting/decrypting sensitive configuration data"""

    def __init__(self, salt_path: Optional[Path] = None):
        self.salt_path = salt_path or self._default_salt_path()
        self._cipher: Optional[Fernet] = None
        self._initialize_cipher()

    @staticmethod
    def _default_salt_path() -> Path:
        config_path = Path(os.getenv("CONFIG_PATH", "/data/config/config.json"))
        return config_path.parent / ".salt"

    def _initialize_cipher(self):
        """Initialize the encryption cipher using a derived key"""
        try:
            if self.salt_path.exists():
                salt = self.salt_path.read_bytes()
            else:
                salt = os.urandom(16)
                self.salt_path.parent.mkdir(parents=True, exist_ok=True)
                self.salt_path.write_bytes(salt)
                os.chmod(self.salt_path, 0o600)

            # Key is bound to the host so a copied config file cannot be decrypted elsewhere
            hostname = os.environ.get('HOSTNAME', 'prunarr')
            container_id = os.environ.get('CONTAINER_ID', hostname)
            key_material = f"{hostname}:{container_id}:prunarr-encryption".encode()

            kdf = PBKDF2HMAC(
                algorithm=hashes.SHA256(),
                length=32,
                salt=salt,
                iterations=100000,
            )
            key = base64.urlsafe_b64encode(kdf.derive(key_material))

            self._cipher = Fernet(key)
            logger.info("Encryption service initialized")

        except OSError as e:
            logger.error(f"Failed to initialize encryption salt at {self.salt_path}: {e}")
            # Process-local key: values written now cannot be read after a restart
            self._cipher = Fernet(Fernet.generate_key())
            logger.warning("Using ephemeral encryption key - secrets will not survive a restart")

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string value"""
        if not plaintext:
            return ""
        encrypted = self._cipher.encrypt(plaintext.encode())
        return base64.b64encode(encrypted).decode('utf-8')

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a string value"""
        if not ciphertext:
            return ""

        if ciphertext.startswith(UNENCRYPTED_PREFIX):
            return ciphertext[len(UNENCRYPTED_PREFIX):]

        try:
            encrypted = base64.b64decode(ciphertext.encode('utf-8'))
            return self._cipher.decrypt(encrypted).decode('utf-8')
        except (InvalidToken, binascii.Error, ValueError) as e:
            logger.error(f"Decryption failed, dropping stored secret: {e}")
            return ""

    def is_encrypted(self, value: str) -> bool:
        """Check if a value appears to be encrypted"""
        if not value or value.startswith(UNENCRYPTED_PREFIX):
            return False
        try:
            decoded = base64.b64decode(value.encode('utf-8'), validate=True)
        except (binascii.Error, ValueError):
            return False
        # Fernet tokens start with the 0x80 version byte
        return len(decoded) > 0 and decoded[0] == 0x80


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Get the process-wide encryption service, creating it on first use"""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service


def reset_encryption_service() -> None:
    """Forget the cached service (used when CONFIG_PATH changes)"""
    global _encryption_service
    _encryption_service = None


# Sensitive fields, matched by key name or dotted path
SENSITIVE_FIELDS = [
    'sonarr_api_key',
    'radarr_api_key',
    'secret',
    'notifications.webhook.secret',
]


def encrypt_sensitive_fields(data: dict, path: str = "") -> dict:
    """Recursively encrypt sensitive fields in a dictionary"""
    service = get_encryption_service()
    result = {}

    for key, value in data.items():
        current_path = f"{path}.{key}" if path else key

        if isinstance(value, dict):
            result[key] = encrypt_sensitive_fields(value, current_path)
        elif isinstance(value, list):
            result[key] = [
                encrypt_sensitive_fields(item, current_path) if isinstance(item, dict) else item
                for item in value
            ]
        elif (current_path in SENSITIVE_FIELDS or key in SENSITIVE_FIELDS) \
                and value and isinstance(value, str) and not service.is_encrypted(value):
            result[key] = service.encrypt(value)
            logger.debug(f"Encrypted field: {current_path}")
        else:
            result[key] = value

    return result


def decrypt_sensitive_fields(data: dict, path: str = "") -> dict:
    """Recursively decrypt sensitive fields in a dictionary"""
    service = get_encryption_service()
    result = {}

    for key, value in data.items():
        current_path = f"{path}.{key}" if path else key

        if isinstance(value, dict):
            result[key] = decrypt_sensitive_fields(value, current_path)
        elif isinstance(value, list):
            result[key] = [
                decrypt_sensitive_fields(item, current_path) if isinstance(item, dict) else item
                for item in value
            ]
        elif (current_path in SENSITIVE_FIELDS or key in SENSITIVE_FIELDS) \
                and value and isinstance(value, str) and service.is_encrypted(value):
            result[key] = service.decrypt(value)
            logger.debug(f"Decrypted field: {current_path}")
        else:
            result[key] = value

    return result


def mask_secret(value: Optional[str]) -> Optional[str]:
    """Mask a secret for display, keeping the last four characters"""
    if not value:
        return value
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"
