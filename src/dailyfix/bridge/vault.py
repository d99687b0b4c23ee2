# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of DailyFix Bridge.
#
# DailyFix Bridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
DailyFix Bridge -- Credential Vault (v1.0.0)

Encrypts the secret fields of a linked account's credentials before they
reach the record store. Fernet (AES-128-CBC + HMAC-SHA256); the key is
either derived from a configured passphrase with PBKDF2-HMAC-SHA256 or
generated once per install and kept beside the database.

Stored shape:
    {"token": "<fernet token>", "room_id": "!abc:hub", "encrypted": ["token"]}

``room_id`` stays readable so a disconnect can find the control room.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger("dailyfix.bridge.vault")

ENCRYPTED_FIELDS_KEY = "encrypted"
PLAIN_FIELDS = frozenset({"room_id"})
KEY_FILE = "credentials.key"
SALT_FILE = "credentials.salt"
PBKDF2_ITERATIONS = 600_000


class VaultError(Exception):
    """Stored credentials could not be decrypted with the current key."""


class CredentialCipher:
    """Fernet wrapper that encrypts and decrypts credential dicts field by field."""

    def __init__(self, key: bytes):
        self._fernet = Fernet(key)

    @classmethod
    def generate(cls) -> "CredentialCipher":
        return cls(Fernet.generate_key())

    @classmethod
    def from_passphrase(
        cls, passphrase: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS
    ) -> "CredentialCipher":
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations)
        return cls(base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8"))))

    def encrypt_credentials(self, credentials: dict[str, Any]) -> dict[str, Any]:
        """Encrypt every string field except the plain ones."""
        sealed: dict[str, Any] = {}
        encrypted: list[str] = []
        for name, value in credentials.items():
            if name == ENCRYPTED_FIELDS_KEY:
                continue
            if isinstance(value, str) and name not in PLAIN_FIELDS:
                sealed[name] = self._fernet.encrypt(value.encode("utf-8")).decode("ascii")
                encrypted.append(name)
            else:
                sealed[name] = value
        if encrypted:
            sealed[ENCRYPTED_FIELDS_KEY] = encrypted
        return sealed

    def decrypt_credentials(self, stored: dict[str, Any]) -> dict[str, Any]:
        """Reverse ``encrypt_credentials``. Raises VaultError on a wrong key."""
        plain = {k: v for k, v in stored.items() if k != ENCRYPTED_FIELDS_KEY}
        for name in stored.get(ENCRYPTED_FIELDS_KEY) or []:
            if name not in plain:
                continue
            try:
                plain[name] = self._fernet.decrypt(plain[name].encode("ascii")).decode("utf-8")
            except (InvalidToken, AttributeError) as e:
                raise VaultError(f"Cannot decrypt credential field '{name}'") from e
        return plain


def load_cipher(passphrase: str = "", store_dir: Path | str | None = None) -> CredentialCipher:
    """Build the install's cipher.

    With a passphrase the key is derived from it and a per-install salt;
    without one a random key is generated on first use. Salt and key
    files live in ``store_dir`` and are created owner-readable only.
    """
    directory = Path(store_dir) if store_dir else Path.home() / ".dailyfix"
    if passphrase:
        salt = _read_or_create(directory / SALT_FILE, lambda: os.urandom(32))
        return CredentialCipher.from_passphrase(passphrase, salt)
    return CredentialCipher(_read_or_create(directory / KEY_FILE, Fernet.generate_key))


def _read_or_create(path: Path, make) -> bytes:
    if path.exists():
        return path.read_bytes()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = make()
    path.write_bytes(data)
    try:
        os.chmod(path, 0o600)
    except OSError as e:
        logger.warning("Could not restrict permissions on %s: %s", path, e)
    logger.info("Created credential %s at %s", "salt" if path.name == SALT_FILE else "key", path)
    return data
