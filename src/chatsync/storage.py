"""Local persistence of the session token and user profile."""

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from chatsync.models import UserProfile

logger = logging.getLogger(__name__)


class SessionStore:
    """Small JSON key-value file that survives restarts.

    Holds the bearer token and the signed-in user's profile. The file is read
    once on construction; writes go straight to disk.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._state = self._load()

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable session file %s", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2)

    def store(self, token: str, user: UserProfile) -> None:
        self._state["token"] = token
        self._state["user"] = user.model_dump(mode="json")
        self._save()

    def clear(self) -> None:
        for key in ("token", "user"):
            self._state.pop(key, None)
        self._save()

    def get_token(self) -> str | None:
        return self._state.get("token")

    def get_user(self) -> UserProfile | None:
        raw = self._state.get("user")
        if raw is None:
            return None
        try:
            return UserProfile.model_validate(raw)
        except ValidationError:
            logger.warning("Stored user profile is malformed, ignoring it")
            return None

    @property
    def signed_in(self) -> bool:
        return self.get_token() is not None and self.get_user() is not None
