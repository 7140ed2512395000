"""Initial schema: flights, prices, jobs, flex prices, contexts

Revision ID: 001
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'flights',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('origin', sa.String(3), nullable=False),
        sa.Column('destination', sa.String(3), nullable=False),
        sa.Column('departure_date', sa.Date(), nullable=False),
        sa.Column('return_date', sa.Date()),
        sa.Column('passengers', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('cabin_class', sa.String(20), nullable=False, server_default='economy'),
        sa.Column('preferred_airline', sa.String(100), nullable=False, server_default='any'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_email', sa.String(255)),
        sa.Column('price_threshold', sa.Numeric(10, 2)),
        sa.Column('last_checked_at', sa.DateTime()),
        sa.Column('last_check_status', sa.String(20)),
        sa.Column('last_check_error', sa.Text()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('ix_flights_is_active', 'flights', ['is_active'])

    op.create_table(
        'prices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('flight_id', sa.Integer(), sa.ForeignKey('flights.id', ondelete='CASCADE'), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('airline', sa.String(100)),
        sa.Column('stops', sa.Integer()),
        sa.Column('duration_minutes', sa.Integer()),
        sa.Column('departure_time', sa.String(20)),
        sa.Column('arrival_time', sa.String(20)),
        sa.Column('source', sa.String(50), nullable=False, server_default='google_flights'),
        sa.Column('raw_data', sa.JSON()),
        sa.Column('checked_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_prices_flight_id', 'prices', ['flight_id'])
    op.create_index('ix_prices_checked_at', 'prices', ['checked_at'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('flight_id', sa.Integer(), sa.ForeignKey('flights.id', ondelete='CASCADE')),
        sa.Column('status', sa.String(20), nullable=False, server_default='queued'),
        sa.Column('progress_current', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('progress_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payload', sa.JSON()),
        sa.Column('result', sa.JSON()),
        sa.Column('error_text', sa.Text()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime()),
        sa.Column('finished_at', sa.DateTime()),
    )
    op.create_index('ix_jobs_flight_id', 'jobs', ['flight_id'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('idx_jobs_status_created', 'jobs', ['status', 'created_at'])

    op.create_table(
        'flex_prices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('flight_id', sa.Integer(), sa.ForeignKey('flights.id', ondelete='CASCADE'), nullable=False),
        sa.Column('departure_date', sa.Date(), nullable=False),
        sa.Column('return_date', sa.Date()),
        sa.Column('cabin_class', sa.String(20), nullable=False),
        sa.Column('passengers', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(10, 2)),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('airline', sa.String(100)),
        sa.Column('source', sa.String(50), nullable=False, server_default='amadeus'),
        sa.Column('checked_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            'flight_id', 'departure_date', 'return_date', 'cabin_class', 'passengers',
            name='uq_flex_prices_probe',
        ),
    )
    op.create_index('ix_flex_prices_flight_id', 'flex_prices', ['flight_id'])
    op.create_index('ix_flex_prices_checked_at', 'flex_prices', ['checked_at'])

    op.create_table(
        'contexts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('flight_id', sa.Integer(), sa.ForeignKey('flights.id', ondelete='CASCADE'), nullable=False),
        sa.Column('context_json', sa.Text(), nullable=False),
        sa.Column('fetched_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime()),
    )
    op.create_index('ix_contexts_flight_id', 'contexts', ['flight_id'])
    op.create_index('ix_contexts_expires_at', 'contexts', ['expires_at'])


def downgrade():
    op.drop_table('contexts')
    op.drop_table('flex_prices')
    op.drop_table('jobs')
    op.drop_table('prices')
    op.drop_table('flights')
