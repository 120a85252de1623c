"""Socket.IO gateway.

Routes inbound connection events to the session engine and presence
registry, and fans the full session projection out to every connection
subscribed to a session. Mutations and their broadcasts happen under the
same per-session lock, so every subscriber sees projections in the order the
writes were applied.
"""

import logging
import threading
import time
from typing import Dict, Optional, Tuple

from flask import current_app, request
from flask_socketio import emit

from tictac import socketio
from tictac.auth import verify_credential
from tictac.errors import GameError, NotAParticipant, NotActive, NotFound
from tictac.sessions.rules import ACTIVE, ANONYMOUS, FINISHED

logger = logging.getLogger(__name__)


def _coerce_cell(value):
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


class RealtimeGateway:
    def __init__(self, app, engine, presence, socketio):
        self.app = app
        self.engine = engine
        self.presence = presence
        self.socketio = socketio
        self.namespace = app.config.get('SOCKETIO_NAMESPACE', '/ws')
        self.grace_sec = int(app.config.get('DISCONNECT_GRACE_SEC', 30))
        self.timers_enabled = bool(app.config.get('ENABLE_FORFEIT_TIMERS', True))
        self._pending_forfeits: Dict[Tuple[str, str], float] = {}
        self._pending_lock = threading.Lock()

    # ---- connection lifecycle ----

    def connect(self, connection_id: str, credential: Optional[str] = None):
        identity = verify_credential(credential) if credential else None
        if identity is None:
            return self.presence.attach(connection_id, ANONYMOUS, 'Anonymous')
        return self.presence.attach(connection_id, identity['participantId'], identity['displayName'])

    def join(self, connection_id: str, session_id: str) -> dict:
        record = self.presence.lookup(connection_id)
        if record is None:
            raise NotAParticipant('Not connected')
        if record.session_id and record.session_id != session_id:
            self.leave(connection_id, record.session_id)
        with self.engine.locked(session_id):
            projection = self.engine.get_projection(session_id)
            self.presence.mark_subscribed(connection_id, session_id)
            self._send(connection_id, 'session_state', projection)
            who = {'id': record.participant_id, 'displayName': record.display_name}
            self.broadcast(session_id, 'participant_joined', who, skip=connection_id)
            if self.cancel_grace(record.participant_id, session_id):
                self.broadcast(session_id, 'participant_reconnected', who, skip=connection_id)
        logger.info(f"[join-room] connection={connection_id} session={session_id}")
        return projection

    def move(self, connection_id: str, session_id: str, cell_index) -> dict:
        record = self.presence.lookup(connection_id)
        if record is None:
            raise NotAParticipant('Not connected')
        return self.apply_move(record.participant_id, session_id, cell_index)

    def leave(self, connection_id: str, session_id: str) -> bool:
        record = self.presence.lookup(connection_id)
        if record is None or record.session_id != session_id:
            return False
        self.presence.mark_subscribed(connection_id, None)
        self.broadcast(session_id, 'participant_left',
                       {'id': record.participant_id, 'displayName': record.display_name})
        logger.info(f"[leave-room] connection={connection_id} session={session_id}")
        return True

    def disconnect(self, connection_id: str) -> Optional[float]:
        """Drop the connection; returns the forfeit deadline if one was armed."""
        record = self.presence.detach(connection_id)
        if record is None or record.session_id is None:
            return None
        session_id = record.session_id
        participant_id = record.participant_id
        if self.presence.connections_for(participant_id, session_id):
            # Another tab of the same participant is still watching
            return None
        try:
            projection = self.engine.get_projection(session_id)
        except NotFound:
            return None
        seats = {p['id'] for p in projection['players'].values()}
        deadline = None
        # Every anonymous connection shares the sentinel id, so a disconnect
        # cannot be attributed to the seat holder; no grace or forfeit for it
        if projection['status'] == ACTIVE and participant_id in seats and participant_id != ANONYMOUS:
            deadline = self._arm_grace(participant_id, session_id)
        self.broadcast(session_id, 'participant_disconnected', {
            'id': participant_id,
            'displayName': record.display_name,
            'timeoutSeconds': self.grace_sec if deadline else 0,
        })
        return deadline

    # ---- mutations and fan-out ----

    def apply_move(self, participant_id: str, session_id: str, cell_index) -> dict:
        with self.engine.locked(session_id):
            projection = self.engine.make_move(session_id, participant_id, _coerce_cell(cell_index))
            self.broadcast_projection(session_id, projection)
        return projection

    def publish(self, session_id: str) -> dict:
        """Broadcast the current projection of a session to its subscribers."""
        with self.engine.locked(session_id):
            projection = self.engine.get_projection(session_id)
            self.broadcast_projection(session_id, projection)
        return projection

    def broadcast_projection(self, session_id: str, projection: dict) -> None:
        self.broadcast(session_id, 'session_state', projection)
        if projection['status'] == FINISHED:
            self.broadcast(session_id, 'session_ended', projection)

    def broadcast(self, session_id: str, event: str, payload, skip: Optional[str] = None) -> int:
        sent = 0
        for record in self.presence.subscribers(session_id):
            if record.connection_id == skip:
                continue
            if self._send(record.connection_id, event, payload):
                sent += 1
        return sent

    def _send(self, connection_id: str, event: str, payload) -> bool:
        try:
            self.socketio.emit(event, payload, to=connection_id, namespace=self.namespace)
            return True
        except Exception as exc:
            # One unreachable subscriber must not block the rest of the group
            logger.warning(f"[send-failed] connection={connection_id} event={event} error={exc!r}")
            return False

    # ---- disconnect grace ----

    def _arm_grace(self, participant_id: str, session_id: str) -> float:
        """Start the forfeit countdown for a seated, identified participant."""
        deadline = time.time() + self.grace_sec
        with self._pending_lock:
            self._pending_forfeits[(participant_id, session_id)] = deadline
        logger.info(f"[grace-armed] participant={participant_id} session={session_id} seconds={self.grace_sec}")
        if self.timers_enabled:
            self.socketio.start_background_task(self._grace_worker, participant_id, session_id, deadline)
        return deadline

    def cancel_grace(self, participant_id: str, session_id: str) -> bool:
        with self._pending_lock:
            cancelled = self._pending_forfeits.pop((participant_id, session_id), None) is not None
        if cancelled:
            logger.info(f"[grace-cancelled] participant={participant_id} session={session_id}")
        return cancelled

    def pending_forfeit(self, participant_id: str, session_id: str) -> Optional[float]:
        with self._pending_lock:
            return self._pending_forfeits.get((participant_id, session_id))

    def _grace_worker(self, participant_id: str, session_id: str, deadline: float) -> None:
        self.socketio.sleep(max(0.0, deadline - time.time()))
        with self.app.app_context():
            self.expire_grace(participant_id, session_id, deadline)

    def expire_grace(self, participant_id: str, session_id: str, deadline: Optional[float] = None) -> Optional[dict]:
        """Forfeit the session if the grace period armed at ``deadline`` is still pending."""
        key = (participant_id, session_id)
        with self._pending_lock:
            current = self._pending_forfeits.get(key)
            if current is None or (deadline is not None and current != deadline):
                return None
            del self._pending_forfeits[key]
        with self.engine.locked(session_id):
            try:
                projection = self.engine.forfeit(session_id, participant_id)
            except (NotFound, NotActive, NotAParticipant) as exc:
                logger.info(f"[grace-expired-noop] participant={participant_id} session={session_id} reason={exc.code}")
                return None
            self.broadcast_projection(session_id, projection)
        return projection


# ---- Socket.IO handlers ----

def _gateway() -> RealtimeGateway:
    return current_app.extensions['realtime_gateway']


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _session_id(data) -> Optional[str]:
    if isinstance(data, str):
        return data or None
    return (data or {}).get('sessionId')


def handle_connect(auth=None):
    token = auth.get('token') if isinstance(auth, dict) else None
    if not token:
        token = request.args.get('token')
    record = _gateway().connect(_get_sid(), token)
    emit('connected', {'id': record.participant_id, 'displayName': record.display_name})


def handle_disconnect(reason=None):
    _gateway().disconnect(_get_sid())


def handle_join_session(data):
    session_id = _session_id(data)
    if not session_id:
        emit('error', {'message': 'sessionId is required', 'code': 'bad_request'})
        return
    _gateway().join(_get_sid(), session_id)


def handle_make_move(data):
    session_id = _session_id(data)
    if not session_id:
        emit('error', {'message': 'sessionId is required', 'code': 'bad_request'})
        return
    cell_index = data.get('cellIndex') if isinstance(data, dict) else None
    _gateway().move(_get_sid(), session_id, cell_index)


def handle_leave_session(data):
    session_id = _session_id(data)
    if not session_id:
        emit('error', {'message': 'sessionId is required', 'code': 'bad_request'})
        return
    _gateway().leave(_get_sid(), session_id)


def handle_error(exc):
    """Errors only ever go back to the connection that caused them."""
    if isinstance(exc, GameError):
        emit('error', {'message': exc.message, 'code': exc.code})
        return
    current_app.logger.exception(f"[socket-error] sid={_get_sid()} error={exc!r}")
    emit('error', {'message': 'Internal server error', 'code': 'internal'})


def register_socketio_handlers(namespace: str = '/ws') -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    socketio.on_event('join_session', handle_join_session, namespace=namespace)
    socketio.on_event('make_move', handle_make_move, namespace=namespace)
    socketio.on_event('leave_session', handle_leave_session, namespace=namespace)
    socketio.on_error(namespace)(handle_error)
