"""create user, game_session and session_move tables

Revision ID: 3c7a91d2e5f0
Revises:
Create Date: 2026-10-17 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c7a91d2e5f0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=256), nullable=True),
        sa.Column('avatar_url', sa.String(length=512), nullable=True),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('wins', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('losses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('draws', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_games', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('win_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'game_session',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('player_a', sa.String(length=64), nullable=False),
        sa.Column('player_b', sa.String(length=64), nullable=True),
        sa.Column('board', sa.LargeBinary(length=3), nullable=False),
        sa.Column('current_turn', sa.String(length=1), nullable=False),
        sa.Column('winner', sa.String(length=4), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('finish_reason', sa.String(length=16), nullable=True),
        sa.Column('is_public', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_game_session_code', 'game_session', ['code'], unique=True)
    op.create_index('ix_game_session_player_a', 'game_session', ['player_a'])
    op.create_index('ix_game_session_player_b', 'game_session', ['player_b'])
    op.create_index('ix_game_session_last_activity_at', 'game_session', ['last_activity_at'])
    op.create_index('ix_game_session_queue', 'game_session', ['status', 'is_public', 'created_at'])

    op.create_table(
        'session_move',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('session_id', sa.String(length=32), sa.ForeignKey('game_session.id'), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('cell', sa.Integer(), nullable=False),
        sa.Column('symbol', sa.String(length=1), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('session_id', 'seq', name='uq_session_move_seq'),
    )
    op.create_index('ix_session_move_session_id', 'session_move', ['session_id'])


def downgrade():
    op.drop_index('ix_session_move_session_id', table_name='session_move')
    op.drop_table('session_move')
    op.drop_index('ix_game_session_queue', table_name='game_session')
    op.drop_index('ix_game_session_last_activity_at', table_name='game_session')
    op.drop_index('ix_game_session_player_b', table_name='game_session')
    op.drop_index('ix_game_session_player_a', table_name='game_session')
    op.drop_index('ix_game_session_code', table_name='game_session')
    op.drop_table('game_session')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
