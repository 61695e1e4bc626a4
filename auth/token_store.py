"""Credential storage: access/refresh token pair plus user id, persisted as JSON."""

import json
import logging
import threading
from dataclasses import dataclass

log = logging.getLogger(__name__)

ACCESS_TOKEN = "accessToken"
REFRESH_TOKEN = "refreshToken"
USER_ID = "userId"

KEYS = (ACCESS_TOKEN, REFRESH_TOKEN, USER_ID)


@dataclass(slots=True, frozen=True)
class Credential:
    access_token: str
    refresh_token: str
    user_id: str | None = None


class TokenStore:
    """Key-value credential store.

    All reads and writes go through one lock, so a reader never observes a
    half-replaced pair. ``path=None`` keeps everything in memory.
    """

    def __init__(self, path: str | None = None):
        self._path = path
        self._lock = threading.RLock()
        self._values: dict[str, str] = {}
        self._generation = 0
        self._load()

    # ── key-value surface ──────────────────────────────────

    def get(self, key: str) -> str | None:
        _check_key(key)
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str):
        _check_key(key)
        with self._lock:
            self._values[key] = value
            self._persist()

    def delete(self, key: str):
        _check_key(key)
        with self._lock:
            if self._values.pop(key, None) is not None:
                self._generation += 1
                self._persist()

    # ── whole-credential operations ────────────────────────

    @property
    def is_authenticated(self) -> bool:
        return self.get(ACCESS_TOKEN) is not None

    @property
    def access_token(self) -> str | None:
        return self.get(ACCESS_TOKEN)

    @property
    def refresh_token(self) -> str | None:
        return self.get(REFRESH_TOKEN)

    @property
    def generation(self) -> int:
        """Bumped by every replace(), clear() and delete(): sign-in, refresh, sign-out."""
        with self._lock:
            return self._generation

    def snapshot(self) -> Credential | None:
        with self._lock:
            access = self._values.get(ACCESS_TOKEN)
            if access is None:
                return None
            return Credential(
                access_token=access,
                refresh_token=self._values.get(REFRESH_TOKEN, ""),
                user_id=self._values.get(USER_ID),
            )

    def replace(self, credential: Credential):
        with self._lock:
            values = {
                ACCESS_TOKEN: credential.access_token,
                REFRESH_TOKEN: credential.refresh_token,
            }
            if credential.user_id is not None:
                values[USER_ID] = credential.user_id
            self._values = values
            self._generation += 1
            self._persist()
        log.info("Tokens saved")

    def clear(self):
        with self._lock:
            self._values = {}
            self._generation += 1
            self._persist()
        log.info("Tokens cleared")

    # ── persistence ────────────────────────────────────────

    def _load(self):
        if self._path is None:
            return
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return
        if not isinstance(data, dict):
            return
        self._values = {k: data[k] for k in KEYS if isinstance(data.get(k), str)}

    def _persist(self):
        if self._path is None:
            return
        # Read existing file, merge our keys, leave the rest alone
        data = {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            pass
        if not isinstance(data, dict):
            data = {}

        for key in KEYS:
            if key in self._values:
                data[key] = self._values[key]
            else:
                data.pop(key, None)

        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)


def _check_key(key: str):
    if key not in KEYS:
        raise KeyError(f"Unknown credential key: {key}")
