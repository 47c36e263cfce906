from __future__ import annotations

import contextlib
import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Optional, Protocol

from usersession.logging import get_logger
from usersession.storage.common import deserialize_session, serialize_session
from usersession.storage.models import Session

logger = get_logger(__name__)


class CredentialStore(Protocol):
    def load(self, client_identity: str) -> Optional[Session]: ...

    def save(self, client_identity: str, session: Session) -> None: ...

    def clear(self, client_identity: str) -> None: ...


class MemoryCredentialStore:
    """Process-local store; sessions are lost with the process."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def load(self, client_identity: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(client_identity)

    def save(self, client_identity: str, session: Session) -> None:
        with self._lock:
            self._sessions[client_identity] = session

    def clear(self, client_identity: str) -> None:
        with self._lock:
            self._sessions.pop(client_identity, None)


class FileCredentialStore:
    """Keeps every client identity's session in one JSON state file.

    Layout: ``{"auth": {<client_identity>: <session>}}``. Writes go to a temp
    file in the same directory followed by ``os.replace`` so readers never see
    a partial document.
    """

    STATE_FILENAME = "state.json"

    def __init__(self, state_dir: str | Path) -> None:
        self.state_dir = Path(state_dir).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self.state_dir / self.STATE_FILENAME

    def _read_state(self) -> dict:
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("credential_state_corrupt", path=str(self.path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _write_state(self, state: dict) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.state_dir), prefix=".state_", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as handle:
                json.dump(state, handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise

    def load(self, client_identity: str) -> Optional[Session]:
        with self._lock:
            entry = self._read_state().get("auth", {}).get(client_identity)
        if not entry:
            return None
        try:
            return deserialize_session(entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "credential_entry_invalid",
                client_identity=client_identity,
                error=str(exc),
            )
            return None

    def save(self, client_identity: str, session: Session) -> None:
        with self._lock:
            state = self._read_state()
            auth = state.setdefault("auth", {})
            auth[client_identity] = serialize_session(session)
            self._write_state(state)

    def clear(self, client_identity: str) -> None:
        with self._lock:
            state = self._read_state()
            auth = state.get("auth", {})
            if client_identity not in auth:
                return
            auth.pop(client_identity)
            self._write_state(state)


__all__ = ["CredentialStore", "MemoryCredentialStore", "FileCredentialStore"]
