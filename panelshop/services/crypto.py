from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from panelshop.errors import ValidationError


class CryptoService:
    """Encrypts panel passwords and API keys before they reach the database."""

    def __init__(self, app_secret: str) -> None:
        if not app_secret:
            raise ValueError("app_secret must not be empty")
        digest = hashlib.sha256(app_secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            # APP_SECRET changed since the panel was stored.
            raise ValidationError("Stored panel credential cannot be decrypted") from exc
