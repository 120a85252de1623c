"""Who is connected, and to which session.

This is the broadcast-group source of truth for the realtime gateway and is
independent of session state. Socket.IO handlers can run on several threads,
so every access goes through one re-entrant lock.
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from tictac.sessions.rules import ANONYMOUS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionRecord:
    connection_id: str
    participant_id: str
    display_name: str
    session_id: Optional[str] = None
    connected_at: float = field(default_factory=time.time)


class PresenceRegistry:
    def __init__(self, mirror=None):
        # mirror: optional StateCache that publishes the online set to Redis
        self._mirror = mirror
        self._lock = threading.RLock()
        self._records: Dict[str, ConnectionRecord] = {}

    def attach(self, connection_id: str, participant_id: str, display_name: str = 'Anonymous') -> ConnectionRecord:
        record = ConnectionRecord(connection_id, participant_id, display_name)
        with self._lock:
            self._records[connection_id] = record
        if self._mirror is not None and participant_id != ANONYMOUS:
            self._mirror.set_online(participant_id, connection_id)
        logger.info(f"[attach] connection={connection_id} participant={participant_id}")
        return record

    def detach(self, connection_id: str) -> Optional[ConnectionRecord]:
        with self._lock:
            record = self._records.pop(connection_id, None)
            still_online = record is not None and self.is_online(record.participant_id)
        if record is None:
            return None
        if self._mirror is not None and record.participant_id != ANONYMOUS and not still_online:
            self._mirror.set_offline(record.participant_id)
        logger.info(f"[detach] connection={connection_id} participant={record.participant_id}")
        return record

    def mark_subscribed(self, connection_id: str, session_id: Optional[str]) -> Optional[ConnectionRecord]:
        """Point a connection at a session (or at nothing, with ``None``)."""
        with self._lock:
            record = self._records.get(connection_id)
            if record is None:
                return None
            record = replace(record, session_id=session_id)
            self._records[connection_id] = record
            return record

    def lookup(self, connection_id: str) -> Optional[ConnectionRecord]:
        with self._lock:
            return self._records.get(connection_id)

    def is_online(self, participant_id: str) -> bool:
        with self._lock:
            return any(r.participant_id == participant_id for r in self._records.values())

    def subscribers(self, session_id: str) -> List[ConnectionRecord]:
        with self._lock:
            return [r for r in self._records.values() if r.session_id == session_id]

    def connections_for(self, participant_id: str, session_id: str) -> List[ConnectionRecord]:
        with self._lock:
            return [r for r in self._records.values()
                    if r.participant_id == participant_id and r.session_id == session_id]
