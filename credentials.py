"""
Locally persisted driver credentials.

The backend issues a bearer token at login; this module only stores it in a
small JSON file and hands it to the HTTP client. Keys carry the configured
storage prefix so several app profiles can share one file.
"""

import json
import logging
import os
import threading
from typing import Any, Dict, Optional

from config import CREDENTIALS_PATH, STORAGE_PREFIX

logger = logging.getLogger(__name__)

TOKEN_KEY = "userToken"
USER_KEY = "userData"


class CredentialStore:
    def __init__(self, path: str = CREDENTIALS_PATH, prefix: str = STORAGE_PREFIX):
        self.path = path
        self.prefix = prefix
        self._lock = threading.Lock()

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _read(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.warning("Credential file %s unreadable, treating as empty", self.path, exc_info=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_path, self.path)

    def save(self, token: str, user: Optional[Dict[str, Any]] = None) -> None:
        with self._lock:
            data = self._read()
            data[self._key(TOKEN_KEY)] = token
            if user is not None:
                data[self._key(USER_KEY)] = user
            self._write(data)

    def get_token(self) -> Optional[str]:
        with self._lock:
            return self._read().get(self._key(TOKEN_KEY))

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read().get(self._key(USER_KEY))

    def is_authenticated(self) -> bool:
        """Local check only: a token and user record are both stored."""
        with self._lock:
            data = self._read()
        return bool(data.get(self._key(TOKEN_KEY))) and bool(data.get(self._key(USER_KEY)))

    def clear(self) -> None:
        """Drop the token and user record, keeping any other stored keys."""
        with self._lock:
            data = self._read()
            removed = False
            for name in (TOKEN_KEY, USER_KEY):
                if data.pop(self._key(name), None) is not None:
                    removed = True
            if removed:
                self._write(data)
        if removed:
            logger.info("Cleared stored driver credentials")
