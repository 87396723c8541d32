"""User profile lookup backed by a YAML or JSON file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ProfileDirectory:
    """Read-only directory of user profiles.

    The file is either ``{"users": {<user_id>: {...}}}`` or a top-level
    mapping of user id to profile. Only ``email`` is used for now.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._profiles: dict[str, dict[str, Any]] | None = None

    def load(self) -> dict[str, dict[str, Any]]:
        """Load and cache all profiles; a missing or unset file yields none."""
        if self._profiles is not None:
            return self._profiles

        if self.path is None or not self.path.exists():
            self._profiles = {}
            return self._profiles

        suffix = self.path.suffix.lower()
        if suffix == ".json":
            data = self._load_json(self.path)
        else:
            data = self._load_yaml(self.path)

        users = data.get("users", data)
        if not isinstance(users, dict):
            raise ValueError(f"Profiles must be a mapping/dict: {self.path}")

        self._profiles = {
            str(user_id): profile
            for user_id, profile in users.items()
            if isinstance(profile, dict)
        }
        logger.debug("Loaded %d profiles from %s", len(self._profiles), self.path)
        return self._profiles

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return self.load().get(user_id)

    async def get_default_email(self, user_id: str) -> str | None:
        """Return the profile email for a user, if any."""
        profile = self.get_profile(user_id)
        if not profile:
            return None
        email = profile.get("email")
        if not isinstance(email, str) or not email.strip():
            return None
        return email.strip()

    def _load_yaml(self, path: Path) -> dict:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML profiles file: {path}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError(f"Profiles must be a mapping/dict: {path}")
        return data

    def _load_json(self, path: Path) -> dict:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON profiles file: {path}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Profiles must be a mapping/dict: {path}")
        return data
