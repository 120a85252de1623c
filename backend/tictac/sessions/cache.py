"""Advisory Redis cache for session projections.

Nothing here is authoritative. Every Redis failure is logged and swallowed so
gameplay behaves the same with the cache down or disabled (``REDIS_URL``
unset).
"""

import json
import logging
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

_CACHE_ERRORS = (RedisError, OSError, TypeError, ValueError)


class StateCache:
    def __init__(self, client=None, default_ttl: int = 3600, invitation_ttl: int = 300):
        self.client = client
        self.default_ttl = default_ttl
        self.invitation_ttl = invitation_ttl

    def init_app(self, app):
        url = app.config.get('REDIS_URL')
        self.client = redis.Redis.from_url(url, socket_timeout=1.0) if url else None
        self.default_ttl = int(app.config.get('SESSION_CACHE_TTL_SEC', 3600))
        self.invitation_ttl = int(app.config.get('INVITATION_TTL_SEC', 300))
        if not url:
            logger.info("[cache-disabled] REDIS_URL not set; projections are rebuilt from the store")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    # ---- projections ----

    def put(self, key: str, projection: Any, ttl: Optional[int] = None) -> bool:
        """Store ``projection``; on failure drop whatever is cached under ``key``.

        An entry that could not be overwritten is older than the store, so it
        must not outlive the failed write.
        """
        if self.client is None:
            return False
        try:
            self.client.setex(f"game:{key}", int(ttl or self.default_ttl), json.dumps(projection))
            return True
        except _CACHE_ERRORS as exc:
            logger.warning(f"[cache-put-failed] key={key} error={exc!r}")
        self.invalidate(key)
        return False

    def get(self, key: str) -> Optional[Any]:
        if self.client is None:
            return None
        try:
            data = self.client.get(f"game:{key}")
            return json.loads(data) if data else None
        except _CACHE_ERRORS as exc:
            logger.warning(f"[cache-get-failed] key={key} error={exc!r}")
            return None

    def invalidate(self, key: str) -> None:
        if self.client is None:
            return
        try:
            self.client.delete(f"game:{key}")
        except _CACHE_ERRORS as exc:
            logger.warning(f"[cache-invalidate-failed] key={key} error={exc!r}")

    # ---- invitations ----

    def create_invitation(self, code: str, inviter_id: str, ttl: Optional[int] = None) -> None:
        if self.client is None:
            return
        try:
            self.client.setex(f"invite:{code}", int(ttl or self.invitation_ttl), inviter_id)
        except _CACHE_ERRORS as exc:
            logger.warning(f"[invite-create-failed] code={code} error={exc!r}")

    def get_invitation(self, code: str) -> Optional[str]:
        if self.client is None:
            return None
        try:
            value = self.client.get(f"invite:{code}")
        except _CACHE_ERRORS as exc:
            logger.warning(f"[invite-get-failed] code={code} error={exc!r}")
            return None
        if isinstance(value, bytes):
            value = value.decode('utf-8')
        return value

    def delete_invitation(self, code: str) -> None:
        if self.client is None:
            return
        try:
            self.client.delete(f"invite:{code}")
        except _CACHE_ERRORS as exc:
            logger.warning(f"[invite-delete-failed] code={code} error={exc!r}")

    # ---- online users ----

    def set_online(self, participant_id: str, connection_id: str) -> None:
        if self.client is None:
            return
        try:
            self.client.hset('online_users', participant_id, connection_id)
        except _CACHE_ERRORS as exc:
            logger.warning(f"[online-set-failed] participant={participant_id} error={exc!r}")

    def set_offline(self, participant_id: str) -> None:
        if self.client is None:
            return
        try:
            self.client.hdel('online_users', participant_id)
        except _CACHE_ERRORS as exc:
            logger.warning(f"[online-clear-failed] participant={participant_id} error={exc!r}")
