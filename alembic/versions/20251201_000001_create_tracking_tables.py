"""Create tracking and attribution tables.

Revision ID: 20251201_000001
Revises:
Create Date: 2025-12-01 09:00:00.000000

WHAT:
    Creates the full touchline schema:
    - accounts, api_keys: tenancy and key digests
    - identities, visitors, sessions, events: journey tracking
    - conversions, attribution_models, attribution_credits: attribution output

WHY:
    Every tracking table is tenant-scoped (account_id) and carries an is_test
    flag. Unique constraints back the optimistic find-or-create of visitors and
    sessions and the "supersede, never append" rule for credits.

REFERENCES:
    - touchline/models.py
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20251201_000001'
down_revision = None
branch_labels = None
depends_on = None


API_KEY_ENVIRONMENTS = ('test', 'live')
ALGORITHMS = ('first_touch', 'last_touch', 'linear', 'time_decay', 'u_shaped', 'w_shaped', 'participation')
MODEL_TYPES = ('preset', 'custom')


def _uuid_pk():
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                     server_default=sa.text('gen_random_uuid()'))


def _account_fk():
    return sa.Column('account_id', postgresql.UUID(as_uuid=True),
                     sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False)


def _created_at():
    return sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()'))


def _is_test():
    return sa.Column('is_test', sa.Boolean(), nullable=False, server_default=sa.false())


def upgrade() -> None:
    # =========================================================================
    # STEP 1: Tenancy
    # =========================================================================
    op.create_table(
        'accounts',
        _uuid_pk(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        _created_at(),
    )

    op.create_table(
        'api_keys',
        _uuid_pk(),
        _account_fk(),
        sa.Column('key_digest', sa.String(), nullable=False),
        sa.Column('key_prefix', sa.String(), nullable=False),
        sa.Column('environment', sa.Enum(*API_KEY_ENVIRONMENTS, name='apikeyenvironmentenum'),
                  nullable=False, server_default='live'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('last_used_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        _created_at(),
    )
    op.create_index('ix_api_keys_key_digest', 'api_keys', ['key_digest'], unique=True)

    # =========================================================================
    # STEP 2: Journey tracking
    # =========================================================================
    op.create_table(
        'identities',
        _uuid_pk(),
        _account_fk(),
        sa.Column('external_id', sa.String(), nullable=False),
        sa.Column('traits', sa.JSON(), nullable=True),
        sa.Column('first_identified_at', sa.DateTime(), nullable=False),
        sa.Column('last_identified_at', sa.DateTime(), nullable=False),
        _is_test(),
        _created_at(),
        sa.UniqueConstraint('account_id', 'external_id', name='uq_identity_account_external'),
    )

    op.create_table(
        'visitors',
        _uuid_pk(),
        _account_fk(),
        sa.Column('visitor_id', sa.String(), nullable=False),
        sa.Column('identity_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('identities.id', ondelete='SET NULL'), nullable=True),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('traits', sa.JSON(), nullable=True),
        _is_test(),
        _created_at(),
        sa.UniqueConstraint('account_id', 'visitor_id', name='uq_visitor_account_external'),
    )

    op.create_table(
        'sessions',
        _uuid_pk(),
        _account_fk(),
        sa.Column('visitor_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('visitors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('page_view_count', sa.Integer(), nullable=False, server_default='0'),
        # Write-once attribution fields
        sa.Column('initial_utm', sa.JSON(), nullable=True),
        sa.Column('initial_referrer', sa.String(), nullable=True),
        sa.Column('channel', sa.String(), nullable=True),
        _is_test(),
        _created_at(),
        sa.UniqueConstraint('account_id', 'session_id', 'started_at', name='uq_session_account_external_start'),
    )
    op.create_index('ix_sessions_visitor_started', 'sessions', ['visitor_id', 'started_at'])
    # One active row per (account, session id, visitor)
    op.create_index(
        'ix_sessions_one_active',
        'sessions',
        ['account_id', 'session_id', 'visitor_id'],
        unique=True,
        postgresql_where=sa.text('ended_at IS NULL'),
    )

    op.create_table(
        'events',
        _uuid_pk(),
        _account_fk(),
        sa.Column('visitor_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('visitors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('properties', sa.JSON(), nullable=False),
        _is_test(),
        _created_at(),
    )
    op.create_index('ix_events_account_occurred', 'events', ['account_id', 'occurred_at'])

    # =========================================================================
    # STEP 3: Conversions and attribution
    # =========================================================================
    op.create_table(
        'conversions',
        _uuid_pk(),
        _account_fk(),
        sa.Column('visitor_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('visitors.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sessions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('event_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('events.id', ondelete='SET NULL'), nullable=True),
        sa.Column('conversion_type', sa.String(), nullable=False),
        sa.Column('revenue', sa.Numeric(10, 2), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=False),
        _is_test(),
        _created_at(),
    )
    op.create_index('ix_conversions_account_converted', 'conversions', ['account_id', 'converted_at'])
    op.create_index('ix_conversions_visitor_converted', 'conversions', ['visitor_id', 'converted_at'])

    op.create_table(
        'attribution_models',
        _uuid_pk(),
        _account_fk(),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('model_type', sa.Enum(*MODEL_TYPES, name='attributionmodeltypeenum'),
                  nullable=False, server_default='preset'),
        sa.Column('algorithm', sa.Enum(*ALGORITHMS, name='attributionalgorithmenum'), nullable=False),
        sa.Column('lookback_days', sa.Integer(), nullable=False, server_default='30'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('account_id', 'name', name='uq_attribution_model_account_name'),
        sa.CheckConstraint('lookback_days BETWEEN 1 AND 365', name='ck_attribution_models_lookback_days'),
    )
    op.create_index('ix_attribution_models_account_active', 'attribution_models', ['account_id', 'is_active'])
    # At most one default per account
    op.create_index(
        'ix_attribution_models_one_default',
        'attribution_models',
        ['account_id'],
        unique=True,
        postgresql_where=sa.text('is_default'),
    )

    op.create_table(
        'attribution_credits',
        _uuid_pk(),
        _account_fk(),
        sa.Column('conversion_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('conversions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('attribution_model_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('attribution_models.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('channel', sa.String(), nullable=False),
        sa.Column('credit', sa.Numeric(9, 6), nullable=False),
        sa.Column('revenue_credit', sa.Numeric(10, 2), nullable=True),
        sa.Column('utm_source', sa.String(), nullable=True),
        sa.Column('utm_medium', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),
        _is_test(),
        _created_at(),
        sa.UniqueConstraint('conversion_id', 'attribution_model_id', 'session_id',
                            name='uq_credit_conversion_model_session'),
    )
    op.create_index('ix_credits_account_model_channel', 'attribution_credits',
                    ['account_id', 'attribution_model_id', 'channel'])


def downgrade() -> None:
    # Drop tables in reverse order (respect foreign keys)
    op.drop_table('attribution_credits')
    op.drop_table('attribution_models')
    op.drop_table('conversions')
    op.drop_table('events')
    op.drop_table('sessions')
    op.drop_table('visitors')
    op.drop_table('identities')
    op.drop_table('api_keys')
    op.drop_table('accounts')

    sa.Enum(name='attributionalgorithmenum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='attributionmodeltypeenum').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='apikeyenvironmentenum').drop(op.get_bind(), checkfirst=True)
