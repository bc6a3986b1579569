"""Initial RBAC schema

Revision ID: 001_initial_rbac
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_rbac'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    # SQL-standard CURRENT_TIMESTAMP works on SQLite and Postgres
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    ]


def upgrade() -> None:
    # Skip if tables already exist (e.g. DB created by app create_all())
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if 'organizations' in inspector.get_table_names():
        return

    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('rbac_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_organizations_id'), 'organizations', ['id'], unique=False)
    op.create_index(op.f('ix_organizations_slug'), 'organizations', ['slug'], unique=True)

    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('rbac_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('bypasses_access_control', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('permissions', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', name='uq_roles_organization_name'),
    )
    op.create_index(op.f('ix_roles_id'), 'roles', ['id'], unique=False)
    op.create_index(op.f('ix_roles_organization_id'), 'roles', ['organization_id'], unique=False)

    op.create_table(
        'staff',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('password_hash', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('rbac_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_staff_id'), 'staff', ['id'], unique=False)
    op.create_index(op.f('ix_staff_email'), 'staff', ['email'], unique=True)
    op.create_index(op.f('ix_staff_organization_id'), 'staff', ['organization_id'], unique=False)
    op.create_index(op.f('ix_staff_role_id'), 'staff', ['role_id'], unique=False)

    op.create_table(
        'properties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('property_type', sa.String(), nullable=False, server_default='residential'),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_properties_id'), 'properties', ['id'], unique=False)
    op.create_index(op.f('ix_properties_organization_id'), 'properties', ['organization_id'], unique=False)

    op.create_table(
        'clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_clients_id'), 'clients', ['id'], unique=False)
    op.create_index(op.f('ix_clients_organization_id'), 'clients', ['organization_id'], unique=False)
    op.create_index(op.f('ix_clients_property_id'), 'clients', ['property_id'], unique=False)

    op.create_table(
        'roster_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='scheduled'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_roster_entries_id'), 'roster_entries', ['id'], unique=False)
    op.create_index(op.f('ix_roster_entries_organization_id'), 'roster_entries', ['organization_id'], unique=False)
    op.create_index(op.f('ix_roster_entries_staff_id'), 'roster_entries', ['staff_id'], unique=False)
    op.create_index(op.f('ix_roster_entries_property_id'), 'roster_entries', ['property_id'], unique=False)

    op.create_table(
        'clock_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('roster_entry_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.Enum('clock_in', 'clock_out', name='clock_event_type'), nullable=False),
        sa.Column('event_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('location_lat', sa.Float(), nullable=True),
        sa.Column('location_lng', sa.Float(), nullable=True),
        sa.Column('location_accuracy', sa.Float(), nullable=True),
        sa.Column('distance_meters', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('meta_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['roster_entry_id'], ['roster_entries.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_clock_events_id'), 'clock_events', ['id'], unique=False)
    op.create_index(op.f('ix_clock_events_organization_id'), 'clock_events', ['organization_id'], unique=False)
    op.create_index('ix_clock_events_staff_roster', 'clock_events', ['staff_id', 'roster_entry_id'], unique=False)

    op.create_table(
        'access_grants',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=False),
        sa.Column('property_id', sa.Integer(), nullable=False),
        sa.Column('roster_entry_id', sa.Integer(), nullable=False),
        sa.Column('clock_event_id', sa.Integer(), nullable=True),
        sa.Column(
            'grant_type',
            sa.Enum('rbac_automatic', 'manual', 'temporary', name='grant_type'),
            nullable=False,
        ),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('granted_by', sa.Integer(), nullable=True),
        sa.Column('revoked_by', sa.Integer(), nullable=True),
        sa.Column('revoke_reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id']),
        sa.ForeignKeyConstraint(['roster_entry_id'], ['roster_entries.id']),
        sa.ForeignKeyConstraint(['clock_event_id'], ['clock_events.id']),
        sa.ForeignKeyConstraint(['granted_by'], ['staff.id']),
        sa.ForeignKeyConstraint(['revoked_by'], ['staff.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_access_grants_id'), 'access_grants', ['id'], unique=False)
    op.create_index(op.f('ix_access_grants_organization_id'), 'access_grants', ['organization_id'], unique=False)
    op.create_index('ix_access_grants_staff_revoked', 'access_grants', ['staff_id', 'revoked_at'], unique=False)
    # At most one active grant per (staff, property)
    op.create_index(
        'uq_access_grants_active_staff_property',
        'access_grants',
        ['staff_id', 'property_id'],
        unique=True,
        postgresql_where=sa.text('revoked_at IS NULL'),
        sqlite_where=sa.text('revoked_at IS NULL'),
    )

    op.create_table(
        'access_audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('staff_id', sa.Integer(), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column(
            'action',
            sa.Enum('access_granted', 'access_revoked', 'access_denied', 'access_requested', name='audit_action'),
            nullable=False,
        ),
        sa.Column(
            'resource_type',
            sa.Enum('property', 'client', 'document', 'roster', name='audit_resource_type'),
            nullable=False,
        ),
        sa.Column('resource_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('meta_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff.id']),
        sa.ForeignKeyConstraint(['actor_id'], ['staff.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_access_audit_logs_id'), 'access_audit_logs', ['id'], unique=False)
    op.create_index(op.f('ix_access_audit_logs_staff_id'), 'access_audit_logs', ['staff_id'], unique=False)
    op.create_index(op.f('ix_access_audit_logs_resource_id'), 'access_audit_logs', ['resource_id'], unique=False)
    op.create_index('ix_access_audit_logs_org_created', 'access_audit_logs', ['organization_id', 'created_at'], unique=False)

    op.create_table(
        'rbac_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=False),
        sa.Column('strict_mode', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('grace_period_minutes', sa.Integer(), nullable=False, server_default='15'),
        sa.Column('require_location', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_distance_meters', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('audit_logging', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_on_clock_in', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_on_clock_out', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_on_access_granted', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_on_access_revoked', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('manual_grants_expire_with_shift', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['organization_id'], ['organizations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id'),
    )
    op.create_index(op.f('ix_rbac_settings_id'), 'rbac_settings', ['id'], unique=False)


def downgrade() -> None:
    op.drop_table('rbac_settings')
    op.drop_index('ix_access_audit_logs_org_created', table_name='access_audit_logs')
    op.drop_table('access_audit_logs')
    op.drop_index('uq_access_grants_active_staff_property', table_name='access_grants')
    op.drop_index('ix_access_grants_staff_revoked', table_name='access_grants')
    op.drop_table('access_grants')
    op.drop_index('ix_clock_events_staff_roster', table_name='clock_events')
    op.drop_table('clock_events')
    op.drop_table('roster_entries')
    op.drop_table('clients')
    op.drop_table('properties')
    op.drop_table('staff')
    op.drop_table('roles')
    op.drop_table('organizations')
    sa.Enum(name='audit_resource_type').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='audit_action').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='grant_type').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='clock_event_type').drop(op.get_bind(), checkfirst=True)
