"""
SiteMirror - Session Store
Per-client identity: a fixed user agent plus the cookies upstream has set.
"""

import logging
import random
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple

import httpx

from .cookie_handler import merge_set_cookies


logger = logging.getLogger(__name__)


# Realistic desktop browser builds; one is pinned per session
USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2.1 Safari/605.1.15',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36',
]


@dataclass
class Session:
    id: str
    user_agent: str
    cookie_header: str = ''
    created_at: float = field(default_factory=time.time)


class SessionStore:
    """
    Thread-safe map of proxy-issued session ids to client identities.

    Each session also owns a cookie jar used by the HTTP/2 transport
    strategy; both are removed together once the session outlives
    ``max_age`` seconds.
    """

    def __init__(self, max_age: float = 24 * 60 * 60,
                 user_agents: Optional[Iterable[str]] = None,
                 clock: Callable[[], float] = time.time):
        self.max_age = max_age
        self.user_agents = list(user_agents or USER_AGENTS)
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._cookie_jars: Dict[str, httpx.Cookies] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def resolve(self, session_id: Optional[str]) -> Tuple[Session, bool]:
        """
        Find the session for an inbound cookie value, creating one if needed.

        Args:
            session_id: Value of the session cookie, if the client sent one

        Returns:
            (session, created) where created is True for a new session
        """
        with self._lock:
            if session_id and session_id in self._sessions:
                return self._sessions[session_id], False

            session = Session(
                id=secrets.token_hex(16),
                user_agent=random.choice(self.user_agents),
                created_at=self._clock(),
            )
            self._sessions[session.id] = session

        logger.debug("Created session %s", session.id)
        return session, True

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def record_cookies(self, session_id: str, set_cookie_headers: Iterable[str]) -> None:
        """Merge upstream Set-Cookie values into the session's cookie string."""
        set_cookie_headers = list(set_cookie_headers)
        if not set_cookie_headers:
            return

        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.cookie_header = merge_set_cookies(session.cookie_header, set_cookie_headers)

    def cookie_jar(self, session_id: str) -> Optional[httpx.Cookies]:
        """Return the session's jar, or None once the session has been swept."""
        with self._lock:
            if session_id not in self._sessions:
                return None
            jar = self._cookie_jars.get(session_id)
            if jar is None:
                jar = self._cookie_jars[session_id] = httpx.Cookies()
            return jar

    def sweep(self) -> int:
        """
        Remove sessions (and their cookie jars) older than ``max_age``.

        Returns:
            Number of sessions removed
        """
        now = self._clock()
        with self._lock:
            expired = [sid for sid, session in self._sessions.items()
                       if now - session.created_at > self.max_age]
            for sid in expired:
                del self._sessions[sid]
                self._cookie_jars.pop(sid, None)

        if expired:
            logger.info("Swept %d expired sessions", len(expired))
        return len(expired)

    def start_sweeper(self, interval: float) -> None:
        """Run :meth:`sweep` every ``interval`` seconds on a daemon thread."""
        if self._sweeper is not None:
            return

        def run():
            while not self._stop.wait(interval):
                self.sweep()

        self._stop.clear()
        self._sweeper = threading.Thread(target=run, name='session-sweeper', daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
