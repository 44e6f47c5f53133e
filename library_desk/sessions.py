"""Server-side sessions.

A session id is an opaque random token handed to the client (as a cookie by
the HTTP layer). The identity it maps to lives only in process memory and is
never persisted; restarting the server logs everybody out.
"""

import secrets
import threading
from typing import Dict, Optional

from .identity import IdentityStore
from .models import ANONYMOUS, Identity


class SessionStore:
    """Thread-safe map of session id to identity."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Identity] = {}
        self._lock = threading.Lock()

    def create(self, identity: Identity) -> str:
        with self._lock:
            # Generate a token that isn't already in use
            while True:
                session_id = secrets.token_urlsafe(32)
                if session_id not in self._sessions:
                    break
            self._sessions[session_id] = identity
        return session_id

    def get(self, session_id: Optional[str]) -> Optional[Identity]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def discard(self, session_id: Optional[str]) -> bool:
        if not session_id:
            return False
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class SessionContext:
    """The identity bound to one request.

    Built per request from the session id the client presented; handlers
    receive it explicitly instead of looking up a global.
    """

    def __init__(self, store: SessionStore, identities: IdentityStore, session_id: Optional[str] = None) -> None:
        self.store = store
        self.identities = identities
        self.session_id = session_id

    def current_identity(self) -> Identity:
        return self.store.get(self.session_id) or ANONYMOUS

    def login(self, username: str, password: str) -> Identity:
        """Verify credentials and bind the identity to a fresh session id.

        Nothing is bound when verification fails.
        """
        identity = self.identities.authenticate(username, password)
        # Rotate: never reuse an id the client held before logging in.
        self.store.discard(self.session_id)
        self.session_id = self.store.create(identity)
        return identity

    def logout(self) -> None:
        self.store.discard(self.session_id)
        self.session_id = None
