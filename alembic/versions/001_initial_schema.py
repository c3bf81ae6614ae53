"""Question history table

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'history_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('caller', sa.String(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('answer', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_history_records_id'), 'history_records', ['id'], unique=False)
    op.create_index(op.f('ix_history_records_caller'), 'history_records', ['caller'], unique=False)
    op.create_index('ix_history_records_caller_subject', 'history_records', ['caller', 'subject'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_history_records_caller_subject', table_name='history_records')
    op.drop_index(op.f('ix_history_records_caller'), table_name='history_records')
    op.drop_index(op.f('ix_history_records_id'), table_name='history_records')
    op.drop_table('history_records')
