"""Initial tables for campaign sync

Revision ID: 20240301_000001
Revises:
Create Date: 2024-03-01

WHAT:
    Creates users, ad_accounts, campaigns and cache_entries.

WHY:
    - ad_accounts: one connected Facebook account per user (encrypted token)
    - campaigns: last synced campaign state, served when Facebook is unavailable
    - cache_entries: 15-minute per-user response cache, swept by the arq worker

REFERENCES:
    - snapix/models.py
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20240301_000001'
down_revision = None
branch_labels = None
depends_on = None


ad_account_status = sa.Enum(
    'connected', 'disconnected', 'token_expired', 'temp',
    name='adaccountstatusenum',
)
budget_type = sa.Enum('daily', 'lifetime', 'none', name='budgettypeenum')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('is_guest', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'ad_accounts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('account_id', sa.String(), nullable=False),
        sa.Column('account_name', sa.String(), nullable=False),
        sa.Column('access_token_enc', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('status', ad_account_status, nullable=False, server_default='connected'),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('created_by_email', sa.String(), nullable=True),
        sa.Column('owner_email', sa.String(), nullable=True),
        sa.Column('last_sync', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_ad_accounts_account_id', 'ad_accounts', ['account_id'])
    op.create_index('ix_ad_accounts_created_by', 'ad_accounts', ['created_by'])
    op.create_index('ix_ad_accounts_created_by_status', 'ad_accounts', ['created_by', 'status'])
    op.create_index('ix_ad_accounts_created_by_email_status', 'ad_accounts', ['created_by_email', 'status'])
    op.create_index('ix_ad_accounts_owner_email_status', 'ad_accounts', ['owner_email', 'status'])

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('meta_campaign_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('effective_status', sa.String(), nullable=True),
        sa.Column('objective', sa.String(), nullable=True),
        sa.Column('budget', sa.Numeric(18, 2), nullable=False, server_default='0'),
        sa.Column('budget_type', budget_type, nullable=False, server_default='none'),
        sa.Column('created_date', sa.DateTime(), nullable=True),
        sa.Column('updated_date', sa.DateTime(), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('platform', sa.String(), nullable=False, server_default='facebook'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('performance_metrics', sa.JSON(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=False),
        sa.Column('ad_account_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_campaigns_meta_campaign_id', 'campaigns', ['meta_campaign_id'], unique=True)
    op.create_index('ix_campaigns_status', 'campaigns', ['status'])
    op.create_index('ix_campaigns_is_active', 'campaigns', ['is_active'])
    op.create_index('ix_campaigns_created_by', 'campaigns', ['created_by'])
    op.create_index('ix_campaigns_ad_account_id', 'campaigns', ['ad_account_id'])
    op.create_index('ix_campaigns_created_by_status', 'campaigns', ['created_by', 'status'])
    op.create_index('ix_campaigns_ad_account_status', 'campaigns', ['ad_account_id', 'status'])
    op.create_index('ix_campaigns_created_by_is_active', 'campaigns', ['created_by', 'is_active'])

    op.create_table(
        'cache_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('user_email', sa.String(), nullable=False),
        sa.Column('value', sa.JSON(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('key', 'user_email', name='uq_cache_entries_key_user'),
    )
    op.create_index('ix_cache_entries_key', 'cache_entries', ['key'])
    op.create_index('ix_cache_entries_user_email', 'cache_entries', ['user_email'])
    op.create_index('ix_cache_entries_expires_at', 'cache_entries', ['expires_at'])


def downgrade() -> None:
    op.drop_table('cache_entries')
    op.drop_table('campaigns')
    op.drop_table('ad_accounts')
    op.drop_table('users')
    budget_type.drop(op.get_bind(), checkfirst=True)
    ad_account_status.drop(op.get_bind(), checkfirst=True)
