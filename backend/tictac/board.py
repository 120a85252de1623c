"""Compact board representation and outcome detection.

Each cell packs into 2 bits (00 empty, 01 X, 10 O); cell ``i`` lives in byte
``i // 4`` at bit offset ``(i % 4) * 2``, so a 9-cell board fits in 3 bytes.
"""

from typing import List, Optional, Sequence

SYMBOL_A = 'X'
SYMBOL_B = 'O'
SYMBOLS = (SYMBOL_A, SYMBOL_B)
CELL_COUNT = 9
ENCODED_SIZE = 3

_CELL_BITS = {None: 0, SYMBOL_A: 1, SYMBOL_B: 2}
_BITS_CELL = {0: None, 1: SYMBOL_A, 2: SYMBOL_B}

# Rows, columns, diagonals. Order matters: the first match wins.
WIN_LINES = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),
    (0, 3, 6), (1, 4, 7), (2, 5, 8),
    (0, 4, 8), (2, 4, 6),
)

Board = List[Optional[str]]


def empty_board() -> Board:
    return [None] * CELL_COUNT


def other_symbol(symbol: str) -> str:
    if symbol == SYMBOL_A:
        return SYMBOL_B
    if symbol == SYMBOL_B:
        return SYMBOL_A
    raise ValueError(f"unknown symbol {symbol!r}")


def _check_board(board: Sequence[Optional[str]]) -> None:
    if len(board) != CELL_COUNT:
        raise ValueError(f"board must have {CELL_COUNT} cells, got {len(board)}")


def encode_board(board: Sequence[Optional[str]]) -> bytes:
    """Pack a 9-cell board into 3 bytes."""
    _check_board(board)
    encoded = bytearray(ENCODED_SIZE)
    for index, cell in enumerate(board):
        try:
            value = _CELL_BITS[cell]
        except KeyError:
            raise ValueError(f"invalid cell value {cell!r} at {index}") from None
        encoded[index // 4] |= value << ((index % 4) * 2)
    return bytes(encoded)


def decode_board(data: bytes) -> Board:
    """Unpack 3 bytes into a 9-cell board."""
    if len(data) != ENCODED_SIZE:
        raise ValueError(f"encoded board must be {ENCODED_SIZE} bytes, got {len(data)}")
    board = empty_board()
    for index in range(CELL_COUNT):
        value = (data[index // 4] >> ((index % 4) * 2)) & 3
        if value not in _BITS_CELL:
            raise ValueError(f"invalid cell bits {value} at {index}")
        board[index] = _BITS_CELL[value]
    return board


def check_outcome(board: Sequence[Optional[str]]) -> Optional[str]:
    """Return the symbol owning the first complete line, or None."""
    _check_board(board)
    for a, b, c in WIN_LINES:
        if board[a] is not None and board[a] == board[b] == board[c]:
            return board[a]
    return None


def is_full(board: Sequence[Optional[str]]) -> bool:
    return all(cell is not None for cell in board)
