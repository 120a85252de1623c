"""Durable session records.

Reads return ``SessionState`` snapshots; writes are compare-and-swap on the
``version`` column so two writers racing on one session cannot both win.
"""

from typing import List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from tictac import db
from tictac.board import decode_board, encode_board
from tictac.errors import StaleSession
from tictac.models import GameSession, SessionMove
from tictac.sessions.rules import FINISHED, WAITING, Move, SessionState


class CodeCollision(Exception):
    """The generated session code is already taken."""


def _to_state(row: GameSession) -> SessionState:
    return SessionState(
        id=row.id,
        code=row.code,
        player_a=row.player_a,
        player_b=row.player_b,
        board=tuple(decode_board(row.board)),
        current_turn=row.current_turn,
        winner=row.winner,
        status=row.status,
        finish_reason=row.finish_reason,
        is_public=bool(row.is_public),
        moves=tuple(
            Move(actor_id=m.actor_id, cell=m.cell, symbol=m.symbol, timestamp=m.created_at)
            for m in row.moves
        ),
        created_at=row.created_at,
        started_at=row.started_at,
        finished_at=row.finished_at,
        last_activity_at=row.last_activity_at,
        version=row.version,
    )


def _columns(state: SessionState) -> dict:
    return {
        'player_a': state.player_a,
        'player_b': state.player_b,
        'board': encode_board(state.board),
        'current_turn': state.current_turn,
        'winner': state.winner,
        'status': state.status,
        'finish_reason': state.finish_reason,
        'is_public': state.is_public,
        'started_at': state.started_at,
        'finished_at': state.finished_at,
        'last_activity_at': state.last_activity_at,
    }


class SessionStore:

    def get(self, session_id: str) -> Optional[SessionState]:
        # populate_existing: another writer may have moved the row since this
        # identity map last saw it
        row = db.session.get(GameSession, session_id, populate_existing=True)
        return _to_state(row) if row else None

    def get_waiting_by_code(self, code: str) -> Optional[SessionState]:
        row = (GameSession.query
               .filter_by(code=code, status=WAITING)
               .populate_existing()
               .first())
        return _to_state(row) if row else None

    def oldest_public_waiting(self, exclude_creator: str, skip_ids=()) -> Optional[SessionState]:
        query = GameSession.query.filter(
            GameSession.status == WAITING,
            GameSession.is_public.is_(True),
            GameSession.player_a != exclude_creator,
        )
        if skip_ids:
            query = query.filter(GameSession.id.notin_(list(skip_ids)))
        row = query.order_by(GameSession.created_at.asc(), GameSession.id.asc()).populate_existing().first()
        return _to_state(row) if row else None

    def insert(self, state: SessionState) -> None:
        row = GameSession(id=state.id, code=state.code, created_at=state.created_at,
                          version=state.version, **_columns(state))
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            raise CodeCollision(state.code) from exc

    def save(self, new: SessionState, expected_version: int, previous_moves: int) -> SessionState:
        """Write ``new`` if the stored version still equals ``expected_version``.

        Moves beyond ``previous_moves`` are appended to the log in the same
        transaction. Raises ``StaleSession`` when another writer got there
        first; database errors roll back and propagate.
        """
        try:
            updated = (GameSession.query
                       .filter_by(id=new.id, version=expected_version)
                       .update(dict(_columns(new), version=expected_version + 1),
                               synchronize_session=False))
            if updated != 1:
                db.session.rollback()
                raise StaleSession(new.id)
            for seq, move in enumerate(new.moves[previous_moves:], start=previous_moves + 1):
                db.session.add(SessionMove(session_id=new.id, seq=seq, actor_id=move.actor_id,
                                           cell=move.cell, symbol=move.symbol, created_at=move.timestamp))
            db.session.commit()
        except StaleSession:
            raise
        except IntegrityError as exc:
            # The move log's (session_id, seq) key is the second line of defence
            db.session.rollback()
            raise StaleSession(new.id) from exc
        except Exception:
            db.session.rollback()
            raise
        return self.get(new.id)

    def count_public(self, status: str) -> int:
        return GameSession.query.filter_by(is_public=True, status=status).count()

    def finished_for(self, participant_id: str, page: int, limit: int) -> Tuple[List[SessionState], int]:
        query = GameSession.query.filter(
            or_(GameSession.player_a == participant_id, GameSession.player_b == participant_id),
            GameSession.status == FINISHED,
        )
        total = query.count()
        rows = (query.order_by(GameSession.finished_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all())
        return [_to_state(r) for r in rows], total
