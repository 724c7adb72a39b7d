# /patientshare/utils/encryption_util.py
"""Field-level encryption for patient PII and comment bodies.

Values are stored as Fernet tokens in text columns. A token that no longer
decrypts (rotated key, corrupted row) reads back as None and is logged, so one
bad column does not take down a whole patient listing.
"""
from cryptography.fernet import Fernet, InvalidToken
from flask import current_app


class PiiCipher:
    def __init__(self, app=None):
        self._fernet = None
        if app:
            self.init_app(app)

    def init_app(self, app):
        key = app.config.get('PII_ENCRYPTION_KEY')
        if not key:
            raise ValueError("PII_ENCRYPTION_KEY is required to store patient records")
        self._fernet = Fernet(key.encode() if isinstance(key, str) else key)

    @property
    def fernet(self) -> Fernet:
        if self._fernet is None:
            raise RuntimeError("PII cipher used before init_app")
        return self._fernet

    def encrypt(self, value) -> str:
        return self.fernet.encrypt(str(value).encode('utf-8')).decode('utf-8')

    def encrypt_optional(self, value) -> str | None:
        """Blank values are stored as NULL rather than as an encrypted empty string."""
        return self.encrypt(value) if value else None

    def decrypt(self, token: str | None) -> str | None:
        fernet = self.fernet
        if not token:
            return None
        try:
            return fernet.decrypt(token.encode('utf-8')).decode('utf-8')
        except InvalidToken:
            current_app.logger.error("Stored PII value could not be decrypted")
            return None

    def encrypt_fields(self, data: dict, fields) -> dict:
        """Encrypted column values for the given fields present in data."""
        return {field: self.encrypt_optional(data[field]) for field in fields if field in data}

    def decrypt_fields(self, record, fields) -> dict:
        return {field: self.decrypt(getattr(record, field)) for field in fields}


encryptor = PiiCipher()
