"""create user, question set, game and team tables

Revision ID: 1a2b3c4d5e6f
Revises:
Create Date: 2026-10-16 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1a2b3c4d5e6f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'question_set',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
    )

    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('question_set_id', sa.Integer(), sa.ForeignKey('question_set.id'), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('options_json', sa.Text(), nullable=False),
        sa.Column('correct_answer', sa.Text(), nullable=False),
    )

    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_id', sa.String(length=16), nullable=False),
        sa.Column('client_name', sa.String(length=128), nullable=False),
        sa.Column('intervention_name', sa.String(length=128), nullable=True),
        sa.Column('batch_id', sa.String(length=64), nullable=True),
        sa.Column('number_of_teams', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('current_question_index', sa.Integer(), nullable=False),
        sa.Column('answering_team_name', sa.String(length=64), nullable=True),
        sa.Column('attempted_teams', sa.Text(), nullable=True),
        sa.Column('questions', sa.Text(), nullable=False),
        sa.Column('facilitator_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('question_set_id', sa.Integer(), sa.ForeignKey('question_set.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
    )
    op.create_index('ix_game_game_id', 'game', ['game_id'], unique=True)

    op.create_table(
        'team',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_pk', sa.Integer(), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('is_ready', sa.Boolean(), nullable=False),
        sa.Column('socket_id', sa.String(length=64), nullable=True),
        sa.UniqueConstraint('game_pk', 'name', name='uq_team_game_name'),
    )
    op.create_index('ix_team_game_pk', 'team', ['game_pk'])


def downgrade():
    op.drop_index('ix_team_game_pk', table_name='team')
    op.drop_table('team')
    op.drop_index('ix_game_game_id', table_name='game')
    op.drop_table('game')
    op.drop_table('question')
    op.drop_table('question_set')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
