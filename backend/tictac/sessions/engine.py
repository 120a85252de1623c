"""Session engine: the only writer of session records.

Every mutation follows the same path: take the per-session lock, read the
durable state, run a pure rule transformation, compare-and-swap it back,
then refresh the advisory cache. A lost compare-and-swap re-reads and
re-validates, so a racing loser sees ``NotYourTurn``/``CellOccupied`` rather
than silently overwriting.
"""

import logging
import math
import re
import secrets
import string
import threading
import uuid
from contextlib import contextmanager
from typing import Callable, Dict, Optional

from tictac import players
from tictac.errors import NotFound, StaleSession
from tictac.models import utcnow
from tictac.sessions.rules import (
    ACTIVE, FINISHED, WAITING, SessionState, apply_forfeit, apply_join, apply_move, new_session,
)
from tictac.sessions.store import CodeCollision, SessionStore

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
_CODE_RE = re.compile(r'[A-Z0-9]{6}')
MAX_WRITE_ATTEMPTS = 5


def generate_code(length: int = CODE_LENGTH) -> str:
    return ''.join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(raw) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    return code if _CODE_RE.fullmatch(code) else None


def _iso(value):
    return value.isoformat() if value is not None else None


def build_projection(state: SessionState) -> dict:
    """Read view of a session, safe to cache and send over the wire."""
    return {
        'sessionId': state.id,
        'code': state.code,
        'board': list(state.board),
        'currentTurn': state.current_turn,
        'winner': state.winner,
        'status': state.status,
        'finishReason': state.finish_reason,
        'isPublic': state.is_public,
        'moveCount': len(state.moves),
        'players': {
            'X': players.describe_participant(state.player_a),
            'O': players.describe_participant(state.player_b),
        },
        'createdAt': _iso(state.created_at),
        'startedAt': _iso(state.started_at),
        'finishedAt': _iso(state.finished_at),
    }


class SessionLocks:
    """Re-entrant lock per session id, dropped once nobody holds it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self._holders: Dict[str, int] = {}

    @contextmanager
    def hold(self, session_id: str):
        with self._guard:
            lock = self._locks.setdefault(session_id, threading.RLock())
            self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[session_id] -= 1
                if not self._holders[session_id]:
                    del self._holders[session_id]
                    del self._locks[session_id]


class SessionEngine:
    def __init__(self, cache, config, store: Optional[SessionStore] = None,
                 clock: Optional[Callable] = None, code_factory: Callable[[], str] = generate_code):
        self.cache = cache
        self.store = store or SessionStore()
        self.locks = SessionLocks()
        self._clock = clock or utcnow
        self._code_factory = code_factory
        self.code_attempts = int(config.get('CODE_GENERATION_ATTEMPTS', 10))
        self.projection_ttl = int(config.get('SESSION_CACHE_TTL_SEC', 3600))
        self.count_ttl = int(config.get('PUBLIC_COUNT_CACHE_TTL_SEC', 8))
        self.invitation_ttl = int(config.get('INVITATION_TTL_SEC', 300))

    def locked(self, session_id: str):
        return self.locks.hold(session_id)

    # ---- lifecycle ----

    def create_session(self, creator_id: str, is_public: bool = False) -> dict:
        for attempt in range(1, self.code_attempts + 1):
            state = new_session(uuid.uuid4().hex, self._code_factory(), creator_id,
                                bool(is_public), self._clock())
            try:
                self.store.insert(state)
                break
            except CodeCollision:
                logger.info(f"[code-collision] code={state.code} attempt={attempt}")
        else:
            raise RuntimeError(f"could not allocate a session code after {self.code_attempts} attempts")

        if not state.is_public:
            self.cache.create_invitation(state.code, creator_id, self.invitation_ttl)
        self._refresh(state)
        logger.info(f"[create] session={state.id} code={state.code} creator={creator_id} public={state.is_public}")
        return {'sessionId': state.id, 'code': state.code}

    def join_session(self, code, joiner_id: str) -> dict:
        normalized = normalize_code(code)
        found = self.store.get_waiting_by_code(normalized) if normalized else None
        if found is None:
            raise NotFound('Session not found or already started')
        return self._join(found.id, joiner_id)

    def find_public_session(self, seeker_id: str) -> Optional[dict]:
        """Join the oldest waiting public session not created by the seeker."""
        skipped = set()
        while True:
            candidate = self.store.oldest_public_waiting(seeker_id, skipped)
            if candidate is None:
                return None
            try:
                return self._join(candidate.id, seeker_id)
            except NotFound:
                # Taken by another seeker between the query and the write
                skipped.add(candidate.id)

    def make_move(self, session_id: str, actor_id: str, cell_index) -> dict:
        before, after = self._mutate(
            session_id, lambda s: apply_move(s, actor_id, cell_index, self._clock()))
        logger.info(f"[move] session={session_id} actor={actor_id} cell={cell_index} status={after.status}")
        return self._finish_write(before, after)

    def forfeit(self, session_id: str, participant_id: str) -> dict:
        before, after = self._mutate(
            session_id, lambda s: apply_forfeit(s, participant_id, self._clock()))
        logger.info(f"[forfeit] session={session_id} participant={participant_id} winner={after.winner}")
        return self._finish_write(before, after)

    # ---- reads ----

    def get_projection(self, session_id: str) -> dict:
        cached = self.cache.get(session_id)
        if cached:
            return cached
        state = self.store.get(session_id)
        if state is None:
            raise NotFound()
        return self._refresh(state)

    def count_public(self, kind: str = 'active') -> int:
        if kind not in (WAITING, ACTIVE):
            raise ValueError(f"unknown count kind {kind!r}")
        key = f"public_games_count:{kind}"
        cached = self.cache.get(key)
        if cached and isinstance(cached.get('count'), int):
            return cached['count']
        count = self.store.count_public(kind)
        self.cache.put(key, {'count': count}, self.count_ttl)
        return count

    def history(self, participant_id: str, page: int = 1, limit: int = 10) -> dict:
        page = max(1, int(page))
        limit = max(1, min(50, int(limit)))
        states, total = self.store.finished_for(participant_id, page, limit)
        return {
            'sessions': [build_projection(s) for s in states],
            'total': total,
            'page': page,
            'pages': math.ceil(total / limit) if total else 0,
        }

    def pending_invitation(self, code) -> Optional[str]:
        normalized = normalize_code(code)
        return self.cache.get_invitation(normalized) if normalized else None

    # ---- internals ----

    def _join(self, session_id: str, joiner_id: str) -> dict:
        def transform(state):
            if state.status != WAITING:
                raise NotFound('Session not found or already started')
            return apply_join(state, joiner_id, self._clock())

        _, after = self._mutate(session_id, transform)
        self.cache.delete_invitation(after.code)
        logger.info(f"[join] session={session_id} code={after.code} joiner={joiner_id}")
        return self._refresh(after)

    def _mutate(self, session_id: str, transform):
        with self.locked(session_id):
            for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
                current = self.store.get(session_id)
                if current is None:
                    raise NotFound()
                new = transform(current)
                try:
                    return current, self.store.save(new, current.version, len(current.moves))
                except StaleSession:
                    logger.info(f"[stale-write] session={session_id} attempt={attempt}")
            raise StaleSession(session_id)

    def _finish_write(self, before: SessionState, after: SessionState) -> dict:
        if after.status == FINISHED and before.status != FINISHED:
            # The session write is already committed; every subscriber must
            # still get the final projection when statistics cannot be saved
            try:
                updated = players.record_result(after)
            except Exception:
                logger.exception(f"[stats-failed] session={after.id} winner={after.winner}")
            else:
                logger.info(f"[finish] session={after.id} winner={after.winner} "
                            f"reason={after.finish_reason} stats_updated={updated}")
        return self._refresh(after)

    def _refresh(self, state: SessionState) -> dict:
        projection = build_projection(state)
        self.cache.put(state.id, projection, self.projection_ttl)
        return projection
