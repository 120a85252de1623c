"""Session rules as pure transformations.

``SessionState`` is an immutable snapshot of one session. Every rule check
happens here, without I/O: ``apply_join``, ``apply_move`` and
``apply_forfeit`` take a state and return a new one (or raise a
``GameError``). Persisting the result is the store's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Tuple

from tictac.board import (
    CELL_COUNT, SYMBOL_A, SYMBOL_B, check_outcome, empty_board, is_full, other_symbol,
)
from tictac.errors import (
    CellOccupied, InvalidPosition, NotActive, NotAParticipant, NotYourTurn, SelfJoin,
)

ANONYMOUS = 'anonymous'

WAITING = 'waiting'
ACTIVE = 'active'
FINISHED = 'finished'

DRAW = 'draw'


@dataclass(frozen=True)
class Move:
    actor_id: str
    cell: int
    symbol: str
    timestamp: datetime


@dataclass(frozen=True)
class SessionState:
    id: str
    code: str
    player_a: str
    created_at: datetime
    player_b: Optional[str] = None
    board: Tuple[Optional[str], ...] = field(default_factory=lambda: tuple(empty_board()))
    current_turn: str = SYMBOL_A
    winner: Optional[str] = None
    status: str = WAITING
    finish_reason: Optional[str] = None
    is_public: bool = False
    moves: Tuple[Move, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    version: int = 0

    def symbol_for(self, participant_id: str) -> Optional[str]:
        if participant_id == self.player_a:
            return SYMBOL_A
        if self.player_b is not None and participant_id == self.player_b:
            return SYMBOL_B
        return None

    def participant_for(self, symbol: str) -> Optional[str]:
        return self.player_a if symbol == SYMBOL_A else self.player_b

    @property
    def participants(self) -> Tuple[str, ...]:
        return tuple(p for p in (self.player_a, self.player_b) if p is not None)


def new_session(session_id: str, code: str, creator_id: str, is_public: bool, now: datetime) -> SessionState:
    return SessionState(
        id=session_id,
        code=code,
        player_a=creator_id,
        is_public=is_public,
        created_at=now,
        last_activity_at=now,
    )


def apply_join(state: SessionState, joiner_id: str, now: datetime) -> SessionState:
    """Fill slot B and start the session."""
    if state.status != WAITING:
        raise NotActive('Session is not waiting for a player')
    if joiner_id == state.player_a:
        raise SelfJoin()
    return replace(
        state,
        player_b=joiner_id,
        status=ACTIVE,
        started_at=now,
        last_activity_at=now,
    )


def apply_move(state: SessionState, actor_id: str, cell: int, now: datetime) -> SessionState:
    """Validate and apply one move.

    Checks run in a fixed order so callers always see the first failing rule:
    active, position, participant, turn, cell.
    """
    if state.status != ACTIVE:
        raise NotActive()
    if isinstance(cell, bool) or not isinstance(cell, int) or not 0 <= cell < CELL_COUNT:
        raise InvalidPosition()
    symbol = state.symbol_for(actor_id)
    if symbol is None:
        raise NotAParticipant()
    if symbol != state.current_turn:
        raise NotYourTurn()
    if state.board[cell] is not None:
        raise CellOccupied()

    board = list(state.board)
    board[cell] = symbol
    moves = state.moves + (Move(actor_id=actor_id, cell=cell, symbol=symbol, timestamp=now),)
    changes = dict(board=tuple(board), moves=moves, last_activity_at=now)

    winner = check_outcome(board)
    if winner is not None:
        changes.update(winner=winner, status=FINISHED, finish_reason='win', finished_at=now)
    elif is_full(board):
        changes.update(winner=DRAW, status=FINISHED, finish_reason=DRAW, finished_at=now)
    else:
        changes.update(current_turn=other_symbol(symbol))
    return replace(state, **changes)


def apply_forfeit(state: SessionState, participant_id: str, now: datetime) -> SessionState:
    """End an active session in favour of the other participant."""
    if state.status != ACTIVE:
        raise NotActive()
    symbol = state.symbol_for(participant_id)
    if symbol is None:
        raise NotAParticipant()
    return replace(
        state,
        winner=other_symbol(symbol),
        status=FINISHED,
        finish_reason='forfeit',
        finished_at=now,
        last_activity_at=now,
    )


def result_for(state: SessionState, participant_id: str) -> Optional[str]:
    """'win', 'loss' or 'draw' for a participant of a finished session."""
    if state.status != FINISHED:
        return None
    if state.winner == DRAW:
        return 'draw'
    symbol = state.symbol_for(participant_id)
    if symbol is None:
        return None
    return 'win' if symbol == state.winner else 'loss'
