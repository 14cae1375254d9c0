"""Initial ledger schema: events, balances, corporate actions, sync state.

Revision ID: 001
Revises: 
Create Date: 2025-01-01
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

EVENT_TYPES = (
    'Transfer',
    'WalletApproved',
    'WalletRevoked',
    'StockSplit',
    'SymbolChanged',
    'NameChanged',
    'TransferBlocked',
)


def upgrade() -> None:
    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('dedup_key', sa.String(length=255), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', sa.String(length=66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('from_address', sa.String(length=42), nullable=True),
        sa.Column('to_address', sa.String(length=42), nullable=True),
        sa.Column('amount', sa.String(length=78), nullable=True),
        sa.Column('payload_json', sa.JSON(), nullable=True),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('transaction_hash', 'log_index', name='uq_events_tx_log_index'),
        sa.CheckConstraint(
            'event_type IN (' + ', '.join(f"'{t}'" for t in EVENT_TYPES) + ')',
            name='chk_event_type',
        ),
    )
    op.create_index('ix_events_id', 'events', ['id'])
    op.create_index('ix_events_dedup_key', 'events', ['dedup_key'], unique=True)
    op.create_index('ix_events_block_number', 'events', ['block_number'])
    op.create_index('ix_events_transaction_hash', 'events', ['transaction_hash'])
    op.create_index('ix_events_event_type', 'events', ['event_type'])
    op.create_index('ix_events_from_address', 'events', ['from_address'])
    op.create_index('ix_events_to_address', 'events', ['to_address'])
    op.create_index('ix_events_block_timestamp', 'events', ['block_timestamp'])

    op.create_table(
        'balances',
        sa.Column('address', sa.String(length=42), primary_key=True),
        sa.Column('balance', sa.String(length=78), nullable=False),
        sa.Column('last_updated_block', sa.BigInteger(), nullable=False),
        sa.Column('last_updated_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_balances_last_updated_block', 'balances', ['last_updated_block'])

    op.create_table(
        'corporate_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.Integer(), sa.ForeignKey('events.id'), nullable=False, unique=True),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('transaction_hash', sa.String(length=66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "action_type IN ('StockSplit', 'SymbolChange', 'NameChange')",
            name='chk_action_type',
        ),
    )
    op.create_index('ix_corporate_actions_id', 'corporate_actions', ['id'])
    op.create_index('ix_corporate_actions_action_type', 'corporate_actions', ['action_type'])
    op.create_index('ix_corporate_actions_block_number', 'corporate_actions', ['block_number'])
    op.create_index('ix_corporate_actions_block_timestamp', 'corporate_actions', ['block_timestamp'])

    op.create_table(
        'indexer_metadata',
        sa.Column('key', sa.String(length=100), primary_key=True),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'indexed_blocks',
        sa.Column('block_number', sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column('block_hash', sa.String(length=66), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('indexed_blocks')
    op.drop_table('indexer_metadata')
    op.drop_index('ix_corporate_actions_block_timestamp', table_name='corporate_actions')
    op.drop_index('ix_corporate_actions_block_number', table_name='corporate_actions')
    op.drop_index('ix_corporate_actions_action_type', table_name='corporate_actions')
    op.drop_index('ix_corporate_actions_id', table_name='corporate_actions')
    op.drop_table('corporate_actions')
    op.drop_index('ix_balances_last_updated_block', table_name='balances')
    op.drop_table('balances')
    for column in ('block_timestamp', 'to_address', 'from_address', 'event_type',
                   'transaction_hash', 'block_number', 'dedup_key', 'id'):
        op.drop_index(f'ix_events_{column}', table_name='events')
    op.drop_table('events')
