"""initial_schema

Revision ID: 3f1a9c2e7b10
Revises:
Create Date: 2026-10-17 09:12:44.518203+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _document_columns() -> list:
    """Columns shared by invoices and credit_notes."""
    return [
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('company_id', sa.UUID(), nullable=True),
        sa.Column('issue_date', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('document_status', sa.String(length=20), nullable=False),
        sa.Column('items', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_by_id', sa.UUID(), nullable=True),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('downloaded_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_by_id', sa.UUID(), nullable=True),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('edited_by_id', sa.UUID(), nullable=True),
        sa.Column('edit_reason', sa.Text(), nullable=True),
        sa.Column('edit_history', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('retention_start_date', sa.DateTime(), nullable=True),
        sa.Column('retention_expiry_date', sa.DateTime(), nullable=True),
        sa.Column('retention_deleted_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
    ]


def upgrade() -> None:
    # 1. companies (self-referencing hierarchy)
    op.create_table('companies',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('parent_id', sa.UUID(), nullable=True),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('type', sa.String(length=10), nullable=True),
    sa.Column('reference_no', sa.Integer(), nullable=True),
    sa.Column('code', sa.String(length=50), nullable=True),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('phone', sa.String(length=50), nullable=True),
    sa.Column('address', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('tax_id', sa.String(length=50), nullable=True),
    sa.Column('vat_number', sa.String(length=50), nullable=True),
    sa.Column('website', sa.Text(), nullable=True),
    sa.Column('primary_contact_id', sa.UUID(), nullable=True),
    sa.Column('send_invoice_email', sa.Boolean(), nullable=False),
    sa.Column('send_invoice_attachment', sa.Boolean(), nullable=False),
    sa.Column('send_statement_email', sa.Boolean(), nullable=False),
    sa.Column('send_statement_attachment', sa.Boolean(), nullable=False),
    sa.Column('send_email_as_summary', sa.Boolean(), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('edi', sa.Boolean(), nullable=False),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_by_id', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.ForeignKeyConstraint(['parent_id'], ['companies.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('reference_no'),
    sa.UniqueConstraint('code')
    )
    op.create_index('idx_companies_parent', 'companies', ['parent_id'], unique=False)
    op.create_index('idx_companies_name', 'companies', ['name'], unique=False)

    # 2. users
    op.create_table('users',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('password_hash', sa.String(length=255), nullable=True),
    sa.Column('must_change_password', sa.Boolean(), nullable=False),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('added_by_id', sa.UUID(), nullable=True),
    sa.Column('last_login', sa.DateTime(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('avatar', sa.Text(), nullable=True),
    sa.Column('reset_password_token', sa.String(length=128), nullable=True),
    sa.Column('reset_password_expires', sa.DateTime(), nullable=True),
    sa.Column('pending_email', sa.String(length=255), nullable=True),
    sa.Column('email_change_token', sa.String(length=128), nullable=True),
    sa.Column('email_change_expires', sa.DateTime(), nullable=True),
    sa.Column('password_expiry_date', sa.DateTime(), nullable=True),
    sa.Column('all_companies', sa.Boolean(), nullable=False),
    sa.Column('send_invoice_email', sa.Boolean(), nullable=False),
    sa.Column('send_invoice_attachment', sa.Boolean(), nullable=False),
    sa.Column('send_statement_email', sa.Boolean(), nullable=False),
    sa.Column('send_statement_attachment', sa.Boolean(), nullable=False),
    sa.Column('send_email_as_summary', sa.Boolean(), nullable=False),
    sa.Column('send_import_summary_report', sa.Boolean(), nullable=False),
    sa.Column('failed_login_attempts', sa.Integer(), nullable=False),
    sa.Column('account_locked_until', sa.DateTime(), nullable=True),
    sa.Column('last_failed_login_at', sa.DateTime(), nullable=True),
    sa.Column('locked_by_id', sa.UUID(), nullable=True),
    sa.Column('lock_reason', sa.String(length=255), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_email', 'users', ['email'], unique=False)
    op.create_index('idx_users_role', 'users', ['role'], unique=False)
    op.create_index('idx_users_reset_token', 'users', ['reset_password_token'], unique=False)
    op.create_index('idx_users_email_change_token', 'users', ['email_change_token'], unique=False)

    # 3. user_companies (many-to-many)
    op.create_table('user_companies',
    sa.Column('user_id', sa.UUID(), nullable=False),
    sa.Column('company_id', sa.UUID(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('user_id', 'company_id')
    )

    # 4. invoices, then credit_notes (FK to invoices)
    op.create_table('invoices',
    *_document_columns(),
    sa.Column('invoice_number', sa.String(length=100), nullable=False),
    sa.UniqueConstraint('invoice_number')
    )
    op.create_index('idx_invoices_company', 'invoices', ['company_id'], unique=False)
    op.create_index('idx_invoices_document_status', 'invoices', ['document_status'], unique=False)
    op.create_index('idx_invoices_created', 'invoices', [sa.text('created_at DESC')], unique=False)

    op.create_table('credit_notes',
    *_document_columns(),
    sa.Column('credit_note_number', sa.String(length=100), nullable=False),
    sa.Column('invoice_id', sa.UUID(), nullable=True),
    sa.Column('reason', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
    sa.UniqueConstraint('credit_note_number')
    )
    op.create_index('idx_credit_notes_company', 'credit_notes', ['company_id'], unique=False)
    op.create_index('idx_credit_notes_document_status', 'credit_notes', ['document_status'], unique=False)
    op.create_index('idx_credit_notes_created', 'credit_notes', [sa.text('created_at DESC')], unique=False)

    # 5. suppliers
    op.create_table('suppliers',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('code', sa.String(length=50), nullable=True),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('phone', sa.String(length=50), nullable=True),
    sa.Column('address', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('tax_id', sa.String(length=50), nullable=True),
    sa.Column('vat_number', sa.String(length=50), nullable=True),
    sa.Column('website', sa.Text(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_by_id', sa.UUID(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )
    op.create_index('idx_suppliers_name', 'suppliers', ['name'], unique=False)

    # 6. files (import uploads)
    op.create_table('files',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('file_name', sa.String(length=255), nullable=False),
    sa.Column('file_hash', sa.String(length=64), nullable=True),
    sa.Column('file_path', sa.Text(), nullable=False),
    sa.Column('file_size', sa.BigInteger(), nullable=True),
    sa.Column('mime_type', sa.String(length=100), nullable=True),
    sa.Column('file_type', sa.String(length=20), nullable=False),
    sa.Column('customer_id', sa.UUID(), nullable=True),
    sa.Column('uploaded_by_id', sa.UUID(), nullable=True),
    sa.Column('import_id', sa.String(length=64), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('failure_reason', sa.String(length=100), nullable=True),
    sa.Column('processed_at', sa.DateTime(), nullable=True),
    sa.Column('uploaded_at', sa.DateTime(), nullable=False),
    sa.Column('deleted_at', sa.DateTime(), nullable=True),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.ForeignKeyConstraint(['customer_id'], ['companies.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_files_hash', 'files', ['file_hash'], unique=False)
    op.create_index('idx_files_status', 'files', ['status'], unique=False)
    op.create_index('idx_files_import', 'files', ['import_id'], unique=False)

    # 7. pending_registrations
    op.create_table('pending_registrations',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('first_name', sa.String(length=100), nullable=False),
    sa.Column('last_name', sa.String(length=100), nullable=False),
    sa.Column('company_name', sa.String(length=255), nullable=False),
    sa.Column('account_number', sa.String(length=100), nullable=True),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('custom_fields', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('reviewed_by_id', sa.UUID(), nullable=True),
    sa.Column('reviewed_at', sa.DateTime(), nullable=True),
    sa.Column('rejection_reason', sa.Text(), nullable=True),
    sa.Column('created_user_id', sa.UUID(), nullable=True),
    sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_pending_registrations_email', 'pending_registrations', ['email'], unique=False)
    op.create_index('idx_pending_registrations_status', 'pending_registrations', ['status'], unique=False)
    op.create_index('idx_pending_registrations_created', 'pending_registrations', [sa.text('created_at DESC')], unique=False)

    # 8. activity_logs (no FKs so entries outlive users and companies)
    op.create_table('activity_logs',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=False),
    sa.Column('user_id', sa.UUID(), nullable=True),
    sa.Column('user_email', sa.String(length=255), nullable=True),
    sa.Column('user_role', sa.String(length=50), nullable=True),
    sa.Column('action', sa.Text(), nullable=False),
    sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('company_id', sa.UUID(), nullable=True),
    sa.Column('company_name', sa.String(length=255), nullable=True),
    sa.Column('ip_address', sa.String(length=64), nullable=True),
    sa.Column('user_agent', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_activity_type', 'activity_logs', ['type'], unique=False)
    op.create_index('idx_activity_user', 'activity_logs', ['user_id'], unique=False)
    op.create_index('idx_activity_company', 'activity_logs', ['company_id'], unique=False)
    op.create_index('idx_activity_created', 'activity_logs', [sa.text('created_at DESC')], unique=False)

    # 9. settings (single row)
    op.create_table('settings',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('company_name', sa.String(length=255), nullable=False),
    sa.Column('site_title', sa.String(length=255), nullable=True),
    sa.Column('system_email', sa.String(length=255), nullable=True),
    sa.Column('primary_color', sa.String(length=20), nullable=False),
    sa.Column('password_expiry_days', sa.Integer(), nullable=True),
    sa.Column('file_retention_days', sa.Integer(), nullable=False),
    sa.Column('document_retention_period', sa.Integer(), nullable=True),
    sa.Column('document_retention_date_trigger', sa.String(length=20), nullable=False),
    sa.Column('only_external_users_change_document_status', sa.Boolean(), nullable=False),
    sa.Column('queries_enabled', sa.Boolean(), nullable=False),
    sa.Column('account_lockout_enabled', sa.Boolean(), nullable=False),
    sa.Column('max_failed_login_attempts', sa.Integer(), nullable=False),
    sa.Column('lockout_duration_minutes', sa.Integer(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )

    # 10. email_templates
    op.create_table('email_templates',
    sa.Column('id', sa.UUID(), nullable=False),
    sa.Column('name', sa.String(length=100), nullable=False),
    sa.Column('subject', sa.String(length=255), nullable=False),
    sa.Column('html_body', sa.Text(), nullable=False),
    sa.Column('text_body', sa.Text(), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('variables', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    sa.Column('category', sa.String(length=20), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=False),
    sa.Column('updated_at', sa.DateTime(), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('name')
    )


def downgrade() -> None:
    op.drop_table('email_templates')
    op.drop_table('settings')
    op.drop_index('idx_activity_created', table_name='activity_logs')
    op.drop_index('idx_activity_company', table_name='activity_logs')
    op.drop_index('idx_activity_user', table_name='activity_logs')
    op.drop_index('idx_activity_type', table_name='activity_logs')
    op.drop_table('activity_logs')
    op.drop_table('pending_registrations')
    op.drop_table('files')
    op.drop_table('suppliers')
    op.drop_table('credit_notes')
    op.drop_table('invoices')
    op.drop_table('user_companies')
    op.drop_table('users')
    op.drop_table('companies')
