"""initial schema: users, revoked tokens, service registry, key rotations

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_sqlite = bind.dialect.name == 'sqlite'

    timestamp_default = sa.text("(datetime('now'))") if is_sqlite else sa.text('now()')
    json_type = sa.JSON() if is_sqlite else postgresql.JSONB(astext_type=sa.Text())
    tz_datetime = sa.DateTime(timezone=True)

    # Users
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('github_user_id', sa.BigInteger(), nullable=False),
        sa.Column('github_access_token', sa.Text(), nullable=True),
        sa.Column('github_refresh_token', sa.Text(), nullable=True),
        sa.Column('github_token_expires_at', tz_datetime, nullable=True),
        sa.Column('is_whitelisted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.Column('updated_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_github_user_id', 'users', ['github_user_id'], unique=True)

    # Revoked JWTs
    op.create_table(
        'revoked_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('jti', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('token_issued_at', tz_datetime, nullable=False),
        sa.Column('token_expires_at', tz_datetime, nullable=False),
        sa.Column('revoked_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.Column('revoked_by', sa.String(length=255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    # Checked on every JWT refresh
    op.create_index('ix_revoked_tokens_jti', 'revoked_tokens', ['jti'], unique=True)
    op.create_index('ix_revoked_tokens_user_id', 'revoked_tokens', ['user_id'])
    # Retention cleanup: DELETE WHERE token_expires_at < cutoff
    op.create_index('ix_revoked_tokens_token_expires_at', 'revoked_tokens', ['token_expires_at'])
    op.create_index('ix_revoked_tokens_revoked_at', 'revoked_tokens', ['revoked_at'])

    # Service registry
    op.create_table(
        'service_registry',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('service_identifier', sa.String(length=255), nullable=False),
        sa.Column('hashed_api_key', sa.Text(), nullable=False),
        sa.Column('allowed_scopes', json_type, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.Column('updated_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.Column('last_used_at', tz_datetime, nullable=True),
        sa.Column('last_api_key_rotated_at', tz_datetime, nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_service_registry_service_identifier', 'service_registry', ['service_identifier'], unique=True)
    op.create_index('ix_service_registry_is_active', 'service_registry', ['is_active'])

    # Service access audit trail (append-only)
    op.create_table(
        'service_audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('service_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_service_audit_logs_service_id', 'service_audit_logs', ['service_id'])
    op.create_index('ix_service_audit_logs_user_id', 'service_audit_logs', ['user_id'])
    op.create_index('ix_service_audit_logs_success', 'service_audit_logs', ['success'])
    op.create_index('ix_service_audit_logs_created_at', 'service_audit_logs', ['created_at'])

    # Key rotation tracking
    op.create_table(
        'key_rotations',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('key_identifier', sa.String(length=255), nullable=False),
        sa.Column('key_type', sa.String(length=50), nullable=False),
        sa.Column('last_rotated_at', tz_datetime, nullable=False),
        sa.Column('next_rotation_due', tz_datetime, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('rotation_interval_days', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.Text(), nullable=True),
        sa.Column('created_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.Column('updated_at', tz_datetime, nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_key_rotations_key_identifier', 'key_rotations', ['key_identifier'], unique=True)
    op.create_index('ix_key_rotations_next_rotation_due', 'key_rotations', ['next_rotation_due'])
    op.create_index('ix_key_rotations_is_active', 'key_rotations', ['is_active'])


def downgrade() -> None:
    op.drop_table('key_rotations')
    op.drop_table('service_audit_logs')
    op.drop_table('service_registry')
    op.drop_table('revoked_tokens')
    op.drop_table('users')
