"""create_fiscal_period_tables

Revision ID: 3c9e1f7a2b10
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c9e1f7a2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('users',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('ADMIN', 'ACCOUNTANT', 'VIEWER', name='role'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_email'), ['email'], unique=True)

    # --- Fiscal years ---
    op.create_table('fiscal_years',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('fiscal_year_type', sa.Enum('CALENDAR', 'CUSTOM', name='fiscalyeartype'), nullable=False),
        sa.Column('is_closed', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('closed_by', sa.Uuid(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['closed_by'], ['users.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('fiscal_years', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_fiscal_years_start_date'), ['start_date'], unique=False)
        batch_op.create_index(
            'uq_fiscal_years_single_active',
            ['is_active'],
            unique=True,
            sqlite_where=sa.text('is_active'),
            postgresql_where=sa.text('is_active'),
        )

    # --- Monthly periods ---
    op.create_table('monthly_periods',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('fiscal_year_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('is_closed', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('closed_by', sa.Uuid(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['fiscal_year_id'], ['fiscal_years.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['closed_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fiscal_year_id', 'year', 'month', name='uq_monthly_period_year_month'),
    )
    with op.batch_alter_table('monthly_periods', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_monthly_periods_fiscal_year_id'), ['fiscal_year_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_monthly_periods_start_date'), ['start_date'], unique=False)

    # --- Reopen audit ---
    op.create_table('fiscal_year_reopenings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('fiscal_year_id', sa.Uuid(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('reopened_by', sa.Uuid(), nullable=True),
        sa.Column('reopened_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['fiscal_year_id'], ['fiscal_years.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['reopened_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('fiscal_year_reopenings', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_fiscal_year_reopenings_fiscal_year_id'), ['fiscal_year_id'], unique=False)

    # --- Journal entries ---
    op.create_table('journal_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('monthly_period_id', sa.Uuid(), nullable=True),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['monthly_period_id'], ['monthly_periods.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('journal_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_journal_entries_monthly_period_id'), ['monthly_period_id'], unique=False)


def downgrade() -> None:
    op.drop_table('journal_entries')
    op.drop_table('fiscal_year_reopenings')
    op.drop_table('monthly_periods')
    op.drop_table('fiscal_years')
    op.drop_table('users')
