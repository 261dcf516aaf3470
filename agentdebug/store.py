"""Published session state shared with readers.

Sessions are immutable, so publishing one is a single reference swap under a
lock: a concurrent reader sees either the previous Session or the next one.
A loaded file session takes precedence over the live one while it is set.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from agentdebug.models import Session

logger = logging.getLogger("agentdebug.store")


class SessionStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._live: Optional[Session] = None
        self._loaded: Optional[Session] = None

    def publish_live(self, session: Session) -> None:
        with self._lock:
            self._live = session
        logger.debug("Published live session %s", session.sessionId)

    def load(self, session: Session, source_file: Optional[str] = None) -> Session:
        """Publish a session read from a file; ``source_file`` overrides its own."""
        if source_file and source_file != session.sourceFile:
            session = session.model_copy(update={"sourceFile": source_file})
        with self._lock:
            self._loaded = session
        logger.info("Loaded %s session %s from %s", session.source.value, session.sessionId, session.sourceFile)
        return session

    def clear_loaded(self) -> None:
        with self._lock:
            self._loaded = None

    def current(self) -> Optional[Session]:
        with self._lock:
            return self._loaded or self._live

    @property
    def live(self) -> Optional[Session]:
        return self._live

    @property
    def loaded(self) -> Optional[Session]:
        return self._loaded

    @property
    def is_loaded(self) -> bool:
        return self._loaded is not None


# Singleton instance
session_store = SessionStore()
