"""
Revoked-token store.

Logout and one-shot password-reset tokens are recorded here until the moment
they would have expired anyway. Tokens are stored as SHA-256 digests.

Single process only: revocations are lost on restart and are not shared
between workers.
"""

import hashlib
import threading
import time


def _digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenBlacklist:
    """Thread-safe map of token digest -> monotonic deadline"""

    def __init__(self, clock=time.monotonic):
        self._revoked = {}
        self._clock = clock
        self._lock = threading.Lock()

    def _purge(self, now: float):
        expired = [key for key, deadline in self._revoked.items() if deadline <= now]
        for key in expired:
            del self._revoked[key]

    def blacklist_token(self, token: str, ttl: int = 3600):
        """Revoke `token` for `ttl` seconds (at least one)."""
        with self._lock:
            now = self._clock()
            self._purge(now)
            self._revoked[_digest(token)] = now + max(ttl, 1)

    def is_token_blacklisted(self, token: str) -> bool:
        with self._lock:
            deadline = self._revoked.get(_digest(token))
            if deadline is None:
                return False
            if deadline <= self._clock():
                del self._revoked[_digest(token)]
                return False
            return True

    def remaining(self, token: str) -> float:
        """Seconds until the revocation of `token` lapses; 0 when it is not revoked."""
        with self._lock:
            deadline = self._revoked.get(_digest(token))
            if deadline is None:
                return 0.0
            return max(deadline - self._clock(), 0.0)

    def __len__(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._revoked)

    def clear(self):
        with self._lock:
            self._revoked.clear()


cache_manager = TokenBlacklist()
