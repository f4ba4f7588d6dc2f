"""Initial schema - organizations, subscriptions, seats, alerts, billing events

Revision ID: 001
Revises:
Create Date: 2026-10-19

WHY: Creates every table the billing engine reads or writes. The
subscriptions.version column backs the compare-and-swap used for all
seat-field writes.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


billing_type = sa.Enum('usage_based', 'quantity_based', 'legacy_volume', name='billing_type')
subscription_status = sa.Enum(
    'on_trial', 'active', 'past_due', 'paused', 'cancelled', 'expired',
    name='subscription_status',
)
membership_status = sa.Enum('active', 'pending_removal', 'archived', name='membership_status')
invitation_status = sa.Enum('pending', 'accepted', 'cancelled', 'expired', name='invitation_status')
alert_severity = sa.Enum('info', 'warning', 'critical', name='alert_severity')
billing_event_status = sa.Enum('processed', 'skipped', 'failed', name='billing_event_status')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('paid_seats', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('billing_override_seats', sa.Integer(), nullable=True),
        sa.Column('billing_override_expires_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_organizations_id', 'organizations', ['id'])
    op.create_index('ix_organizations_name', 'organizations', ['name'])

    # WHY: version starts at 1; every seat write is
    # "UPDATE ... WHERE id = :id AND version = :expected"
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('provider_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('provider_subscription_item_id', sa.String(length=255), nullable=True),
        sa.Column('variant_id', sa.String(length=255), nullable=True),
        sa.Column('billing_type', billing_type, nullable=False, server_default='usage_based'),
        sa.Column('status', subscription_status, nullable=False, server_default='active'),
        sa.Column('current_seats', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending_seats', sa.Integer(), nullable=True),
        sa.Column('quantity_synced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('renews_at', sa.DateTime(), nullable=True),
        sa.Column('queued_invitations', sa.JSON(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_organization_id', 'subscriptions', ['organization_id'])
    op.create_index(
        'ix_subscriptions_provider_subscription_id',
        'subscriptions',
        ['provider_subscription_id'],
        unique=True,
    )
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_renews_at', 'subscriptions', ['renews_at'])

    op.create_table(
        'memberships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='employee'),
        sa.Column('status', membership_status, nullable=False, server_default='active'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_memberships_id', 'memberships', ['id'])
    op.create_index('ix_memberships_organization_id', 'memberships', ['organization_id'])

    op.create_table(
        'invitations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='employee'),
        sa.Column('status', invitation_status, nullable=False, server_default='pending'),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_invitations_id', 'invitations', ['id'])
    op.create_index('ix_invitations_organization_id', 'invitations', ['organization_id'])

    op.create_table(
        'alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('severity', alert_severity, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('job', sa.String(length=100), nullable=True),
        sa.Column('correlation_id', sa.String(length=255), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_alerts_id', 'alerts', ['id'])
    op.create_index('ix_alerts_severity', 'alerts', ['severity'])
    op.create_index('ix_alerts_job', 'alerts', ['job'])
    op.create_index('ix_alerts_correlation_id', 'alerts', ['correlation_id'])

    op.create_table(
        'billing_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=255), nullable=False),
        sa.Column('event_name', sa.String(length=100), nullable=False),
        sa.Column('status', billing_event_status, nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_billing_events_id', 'billing_events', ['id'])
    op.create_index('ix_billing_events_event_id', 'billing_events', ['event_id'], unique=True)


def downgrade() -> None:
    op.drop_table('billing_events')
    op.drop_table('alerts')
    op.drop_table('invitations')
    op.drop_table('memberships')
    op.drop_table('subscriptions')
    op.drop_table('organizations')

    bind = op.get_bind()
    for enum_type in (
        billing_event_status,
        alert_severity,
        invitation_status,
        membership_status,
        subscription_status,
        billing_type,
    ):
        enum_type.drop(bind, checkfirst=True)
