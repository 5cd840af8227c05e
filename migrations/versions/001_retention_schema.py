"""Retention schema: policies, archives, approvals, leases, keys and tenant record stores.

Creates:
- retention_policies (+ policy_configuration_changes history)
- deletion_approvals, retention_leases
- archive_keys, archives (+ audit, access and restoration children)
- One table per retention-managed data type

Revision ID: 001_retention_schema
Revises:
Create Date: 2026-10-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_retention_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# table name -> (date column, extra columns)
RECORD_TABLES = {
    'audit_log_records': ('timestamp', [
        sa.Column('action', sa.String(length=64), nullable=True),
        sa.Column('resource', sa.String(length=128), nullable=True),
    ]),
    'security_event_records': ('timestamp', [
        sa.Column('event_type', sa.String(length=64), nullable=True),
        sa.Column('severity', sa.String(length=16), nullable=True),
    ]),
    'user_records': ('created_at', [
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('full_name', sa.String(length=255), nullable=True),
    ]),
    'insurance_policy_records': ('created_at', [
        sa.Column('policy_number', sa.String(length=64), nullable=True),
    ]),
    'insurance_claim_records': ('created_at', [
        sa.Column('claim_number', sa.String(length=64), nullable=True),
        sa.Column('amount', sa.Float(), nullable=True),
    ]),
    'family_member_records': ('created_at', [
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('relationship_type', sa.String(length=32), nullable=True),
    ]),
    'beneficiary_records': ('created_at', [
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('share_percentage', sa.Float(), nullable=True),
    ]),
    'license_records': ('created_at', [
        sa.Column('license_key', sa.String(length=128), nullable=True),
    ]),
    'backup_log_records': ('created_at', [
        sa.Column('status', sa.String(length=16), nullable=True),
    ]),
    'performance_log_records': ('timestamp', [
        sa.Column('metric', sa.String(length=64), nullable=True),
        sa.Column('value', sa.Float(), nullable=True),
    ]),
    'system_log_records': ('timestamp', [
        sa.Column('level', sa.String(length=16), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
    ]),
    'compliance_log_records': ('timestamp', [
        sa.Column('framework', sa.String(length=32), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
    ]),
    'financial_records': ('created_at', [
        sa.Column('amount', sa.Float(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
    ]),
    'document_records': ('created_at', [
        sa.Column('title', sa.String(length=512), nullable=True),
    ]),
    'report_records': ('created_at', [
        sa.Column('title', sa.String(length=512), nullable=True),
    ]),
}


def upgrade() -> None:
    """Create retention tables."""

    # -------------------------------------------------------------------------
    # 1. Policies
    # -------------------------------------------------------------------------
    print("  Creating retention_policies...")

    op.create_table(
        'retention_policies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('policy_name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('data_type', sa.String(length=64), nullable=False),
        sa.Column('retention_period', sa.JSON(), nullable=False),
        sa.Column('archival_settings', sa.JSON(), nullable=False),
        sa.Column('deletion_settings', sa.JSON(), nullable=False),
        sa.Column('legal_requirements', sa.JSON(), nullable=False),
        sa.Column('execution_schedule', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('next_execution', sa.DateTime(), nullable=True),
        sa.Column('last_executed', sa.DateTime(), nullable=True),
        sa.Column('total_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_archived', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_deleted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_processing_time_ms', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_processed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'data_type', name='uq_retention_policies_tenant_data_type'),
    )
    op.create_index('ix_retention_policies_status_next_execution', 'retention_policies', ['status', 'next_execution'])
    op.create_index('ix_retention_policies_tenant_id', 'retention_policies', ['tenant_id'])

    op.create_table(
        'policy_configuration_changes',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('policy_id', sa.Uuid(), nullable=False),
        sa.Column('changed_by', sa.String(length=64), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['policy_id'], ['retention_policies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_policy_configuration_changes_policy_id', 'policy_configuration_changes', ['policy_id'])

    op.create_table(
        'deletion_approvals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('policy_id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('requested_at', sa.DateTime(), nullable=False),
        sa.Column('decided_by', sa.String(length=64), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('consumed_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['policy_id'], ['retention_policies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_deletion_approvals_policy_status', 'deletion_approvals', ['policy_id', 'status'])

    op.create_table(
        'retention_leases',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('data_type', sa.String(length=64), nullable=False),
        sa.Column('holder', sa.String(length=128), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('tenant_id', 'data_type'),
    )

    print("  Created policy, approval and lease tables")

    # -------------------------------------------------------------------------
    # 2. Archives
    # -------------------------------------------------------------------------
    print("  Creating archives...")

    op.create_table(
        'archive_keys',
        sa.Column('key_id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('wrapped_key', sa.Text(), nullable=False),
        sa.Column('algorithm', sa.String(length=32), nullable=False, server_default='fernet'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key_id'),
    )

    op.create_table(
        'archives',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('archive_id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('retention_policy_id', sa.Uuid(), nullable=True),
        sa.Column('source_collection', sa.String(length=64), nullable=False),
        sa.Column('data_type', sa.String(length=64), nullable=False),
        sa.Column('record_count', sa.Integer(), nullable=False),
        sa.Column('date_range_start', sa.DateTime(), nullable=True),
        sa.Column('date_range_end', sa.DateTime(), nullable=True),
        sa.Column('storage_location', sa.String(length=32), nullable=False, server_default='local'),
        sa.Column('storage_path', sa.String(length=1024), nullable=False),
        sa.Column('cloud_key', sa.String(length=1024), nullable=True),
        sa.Column('original_size', sa.Integer(), nullable=False),
        sa.Column('compressed_size', sa.Integer(), nullable=False),
        sa.Column('compression_ratio', sa.Float(), nullable=False, server_default='0'),
        sa.Column('checksum', sa.String(length=64), nullable=False),
        sa.Column('checksum_algorithm', sa.String(length=16), nullable=False, server_default='sha256'),
        sa.Column('compression_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('compression_algorithm', sa.String(length=16), nullable=True),
        sa.Column('encryption_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('encryption_algorithm', sa.String(length=32), nullable=True),
        sa.Column('encryption_key_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='creating'),
        sa.Column('can_restore', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('legal_hold', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('legal_hold_reason', sa.Text(), nullable=True),
        sa.Column('legal_hold_placed_by', sa.String(length=64), nullable=True),
        sa.Column('legal_hold_placed_at', sa.DateTime(), nullable=True),
        sa.Column('legal_hold_released_at', sa.DateTime(), nullable=True),
        sa.Column('delete_after', sa.DateTime(), nullable=True),
        sa.Column('deletion_approval_required', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_by', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['retention_policy_id'], ['retention_policies.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['encryption_key_id'], ['archive_keys.key_id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('archive_id'),
    )
    op.create_index('ix_archives_tenant_data_type', 'archives', ['tenant_id', 'data_type'])
    op.create_index('ix_archives_status', 'archives', ['status'])
    op.create_index('ix_archives_delete_after', 'archives', ['delete_after'])

    op.create_table(
        'archive_audit_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('archive_pk', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('performed_by', sa.String(length=64), nullable=True),
        sa.Column('performed_at', sa.DateTime(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['archive_pk'], ['archives.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_archive_audit_entries_archive_pk', 'archive_audit_entries', ['archive_pk'])

    op.create_table(
        'archive_access_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('archive_pk', sa.Uuid(), nullable=False),
        sa.Column('accessed_by', sa.String(length=64), nullable=True),
        sa.Column('accessed_at', sa.DateTime(), nullable=False),
        sa.Column('access_type', sa.String(length=16), nullable=False),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.ForeignKeyConstraint(['archive_pk'], ['archives.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_archive_access_logs_archive_pk', 'archive_access_logs', ['archive_pk'])

    op.create_table(
        'archive_restorations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('archive_pk', sa.Uuid(), nullable=False),
        sa.Column('restored_at', sa.DateTime(), nullable=False),
        sa.Column('restored_by', sa.String(length=64), nullable=True),
        sa.Column('target_location', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('records_restored', sa.Integer(), nullable=False),
        sa.Column('total_records', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['archive_pk'], ['archives.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_archive_restorations_archive_pk', 'archive_restorations', ['archive_pk'])

    print("  Created archive tables")

    # -------------------------------------------------------------------------
    # 3. Tenant record stores
    # -------------------------------------------------------------------------
    print("  Creating tenant record tables...")

    for table_name, (date_column, extra_columns) in RECORD_TABLES.items():
        op.create_table(
            table_name,
            sa.Column('id', sa.Uuid(), nullable=False),
            sa.Column('tenant_id', sa.String(length=64), nullable=False),
            sa.Column('payload', sa.JSON(), nullable=True),
            sa.Column('legal_hold', sa.Boolean(), nullable=False, server_default='false'),
            sa.Column('deleted_at', sa.DateTime(), nullable=True),
            sa.Column('deleted_by', sa.String(length=64), nullable=True),
            sa.Column('deletion_reason', sa.String(length=255), nullable=True),
            sa.Column('archived_at', sa.DateTime(), nullable=True),
            sa.Column('archive_reference', sa.String(length=64), nullable=True),
            *extra_columns,
            sa.Column(date_column, sa.DateTime(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(f'ix_{table_name}_tenant_id', table_name, ['tenant_id'])
        op.create_index(f'ix_{table_name}_{date_column}', table_name, [date_column])

    print(f"  Created {len(RECORD_TABLES)} tenant record tables")


def downgrade() -> None:
    """Drop retention tables."""
    for table_name in reversed(list(RECORD_TABLES)):
        op.drop_table(table_name)

    op.drop_table('archive_restorations')
    op.drop_table('archive_access_logs')
    op.drop_table('archive_audit_entries')
    op.drop_table('archives')
    op.drop_table('archive_keys')
    op.drop_table('retention_leases')
    op.drop_table('deletion_approvals')
    op.drop_table('policy_configuration_changes')
    op.drop_table('retention_policies')
