from copy import deepcopy
from threading import Lock
from typing import Any


class ProfileStore:
    """Latest parsed résumé profile per owner, kept in process memory."""

    def __init__(self) -> None:
        self._profiles: dict[str, dict[str, Any]] = {}
        self._lock = Lock()

    def save(self, owner_id: str, profile: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self._profiles[owner_id] = deepcopy(profile)
            return deepcopy(profile)

    def get(self, owner_id: str) -> dict[str, Any] | None:
        with self._lock:
            profile = self._profiles.get(owner_id)
            return deepcopy(profile) if profile is not None else None
