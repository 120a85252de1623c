import pytest

from tictac.board import (
    WIN_LINES, check_outcome, decode_board, empty_board, encode_board, is_full, other_symbol,
)


def test_empty_board_encodes_to_zero_bytes():
    assert encode_board(empty_board()) == b'\x00\x00\x00'
    assert decode_board(b'\x00\x00\x00') == [None] * 9


def test_bit_layout_two_bits_per_cell():
    board = empty_board()
    board[0] = 'X'  # byte 0, bits 0-1 -> 01
    board[3] = 'O'  # byte 0, bits 6-7 -> 10
    board[4] = 'O'  # byte 1, bits 0-1 -> 10
    board[8] = 'X'  # byte 2, bits 0-1 -> 01
    assert encode_board(board) == bytes([0b10000001, 0b00000010, 0b00000001])


def test_decode_inverts_encode_for_mixed_boards():
    boards = [
        ['X', 'O', None, None, 'X', 'O', None, None, 'X'],
        ['O'] * 9,
        ['X', 'O', 'X', 'X', 'O', 'O', 'O', 'X', 'X'],
        [None, None, None, None, None, None, None, None, 'O'],
    ]
    for board in boards:
        assert decode_board(encode_board(board)) == board


@pytest.mark.parametrize('line', WIN_LINES)
@pytest.mark.parametrize('symbol', ['X', 'O'])
def test_every_line_is_detected(line, symbol):
    board = empty_board()
    for index in line:
        board[index] = symbol
    assert check_outcome(board) == symbol


def test_no_winner_on_full_board_without_line():
    board = ['X', 'O', 'X', 'X', 'O', 'O', 'O', 'X', 'X']
    assert check_outcome(board) is None
    assert is_full(board)


def test_first_matching_line_wins():
    # Not reachable in play; pins the scan order
    assert check_outcome(['X', 'X', 'X', 'O', 'O', 'O', None, None, None]) == 'X'
    assert check_outcome(['O', 'O', 'O', 'X', 'X', 'X', None, None, None]) == 'O'


def test_invalid_inputs_raise():
    with pytest.raises(ValueError):
        encode_board([None] * 8)
    with pytest.raises(ValueError):
        encode_board(['Z'] + [None] * 8)
    with pytest.raises(ValueError):
        decode_board(b'\x00\x00')
    with pytest.raises(ValueError):
        decode_board(b'\x03\x00\x00')
    with pytest.raises(ValueError):
        other_symbol('Z')
    assert other_symbol('X') == 'O'
    assert other_symbol('O') == 'X'
