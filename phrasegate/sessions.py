# Form sessions: one FormController per visitor, addressed by a signed token.

from __future__ import annotations
import logging
import secrets
import time
from typing import Dict, MutableMapping, Optional, Tuple
from itsdangerous import BadSignature, Signer, TimestampSigner
from .config import REFRESH_DELAY, RESET_DELAY, SECRET_KEY, SESSION_TTL, STORE_TIMEOUT
from .controller import THEME_KEY, FormController
from .leaderboard import LeaderboardRefresher
from .store import Store

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    alphabet = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    return "".join(secrets.choice(alphabet) for _ in range(12))


class SessionRegistry:
    def __init__(self, store: Store, refresher: LeaderboardRefresher, secret_key: str = SECRET_KEY,
                 ttl: int = SESSION_TTL, reset_delay: float = RESET_DELAY,
                 refresh_delay: float = REFRESH_DELAY, timeout: Optional[float] = STORE_TIMEOUT):
        self.store = store
        self.refresher = refresher
        self.ttl = ttl
        self.reset_delay = reset_delay
        self.refresh_delay = refresh_delay
        self.timeout = timeout
        self.sessions: Dict[str, FormController] = {}
        self._signer = TimestampSigner(secret_key)
        self._cookie_signer = Signer(secret_key, salt="theme")

    def issue_token(self, session_id: str) -> str:
        return self._signer.sign(session_id.encode()).decode()

    def verify_token(self, token: str, session_id: str) -> bool:
        try:
            return self._signer.unsign(token, max_age=self.ttl).decode() == session_id
        except BadSignature:
            return False

    def theme_cookie(self, prefs: MutableMapping[str, str]) -> str:
        return self._cookie_signer.sign(prefs.get(THEME_KEY, "false").encode()).decode()

    def read_theme_cookie(self, cookie: Optional[str]) -> Dict[str, str]:
        if not cookie:
            return {}
        try:
            return {THEME_KEY: self._cookie_signer.unsign(cookie).decode()}
        except BadSignature:
            return {}

    def create(self, theme_cookie: Optional[str] = None) -> Tuple[str, str, FormController]:
        self.prune()
        sid = new_session_id()
        controller = FormController(
            self.store,
            self.refresher,
            prefs=self.read_theme_cookie(theme_cookie),
            reset_delay=self.reset_delay,
            refresh_delay=self.refresh_delay,
            timeout=self.timeout,
        )
        self.sessions[sid] = controller
        logger.debug("Opened form session %s", sid)
        return sid, self.issue_token(sid), controller

    def get(self, session_id: str, token: str) -> FormController:
        if not self.verify_token(token, session_id):
            raise PermissionError("Invalid token")
        controller = self.sessions.get(session_id)
        if controller is None:
            raise LookupError("Session not found")
        return controller

    def prune(self, now: Optional[float] = None) -> int:
        """Drop sessions idle for longer than the TTL; returns how many went."""
        now = now or time.time()
        stale = [sid for sid, c in self.sessions.items()
                 if now - c.last_active > self.ttl and c.submit_enabled]
        for sid in stale:
            del self.sessions[sid]
        if stale:
            logger.info("Pruned %d idle form session(s)", len(stale))
        return len(stale)

    async def close(self) -> None:
        for controller in self.sessions.values():
            await controller.close()
        self.sessions.clear()
