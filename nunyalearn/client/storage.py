from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Protocol

log = logging.getLogger(__name__)


@dataclass
class StoredTokens:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None


class TokenStorage(Protocol):
    """Durable mirror of the in-memory token pair."""

    def load(self) -> StoredTokens: ...

    def save(self, tokens: StoredTokens) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStorage:
    def __init__(self, tokens: StoredTokens | None = None):
        self._tokens = tokens or StoredTokens()

    def load(self) -> StoredTokens:
        return StoredTokens(self._tokens.access_token, self._tokens.refresh_token)

    def save(self, tokens: StoredTokens) -> None:
        self._tokens = StoredTokens(tokens.access_token, tokens.refresh_token)

    def clear(self) -> None:
        self._tokens = StoredTokens()


class FileTokenStorage:
    """Tokens kept as a small JSON file, like the mobile app's key/value store."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> StoredTokens:
        if not self.path.exists():
            return StoredTokens()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.warning("token file %s unreadable; discarding", self.path)
            self.clear()
            return StoredTokens()
        if not isinstance(raw, dict):
            self.clear()
            return StoredTokens()
        return StoredTokens(
            access_token=raw.get("access_token") or None,
            refresh_token=raw.get("refresh_token") or None,
        )

    def save(self, tokens: StoredTokens) -> None:
        if not tokens.access_token and not tokens.refresh_token:
            self.clear()
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(asdict(tokens)), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
