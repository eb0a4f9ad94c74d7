"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2024-01-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

claim_status = sa.Enum(
    'DRAFT', 'SUBMITTED', 'PAID', 'DENIED', 'APPEALED', 'PARTIALLY_PAID', name='claimstatus'
)
payment_status = sa.Enum('POSTED', 'REVERSED', name='paymentstatus')
transfer_status = sa.Enum('COMPLETED', name='transferstatus')
era_file_status = sa.Enum('PROCESSED', 'AUTO_POSTED', name='erafilestatus')
era_line_status = sa.Enum('PENDING', 'AUTO_POSTED', name='eralinestatus')
audit_action = sa.Enum('INSERT', 'UPDATE', 'DELETE', 'BATCH_PROCESS', name='auditaction')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    # Create claims table
    op.create_table(
        'claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.String(length=50), nullable=False),
        sa.Column('claim_control_number', sa.String(length=50), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('status', claim_status, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_claims_id'), 'claims', ['id'], unique=False)
    op.create_index(op.f('ix_claims_patient_id'), 'claims', ['patient_id'], unique=False)
    op.create_index(op.f('ix_claims_claim_control_number'), 'claims', ['claim_control_number'], unique=True)
    op.create_index(op.f('ix_claims_status'), 'claims', ['status'], unique=False)

    # Create patient_accounts table
    op.create_table(
        'patient_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.String(length=50), nullable=False),
        sa.Column('total_balance', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('aging_0_30', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('aging_31_60', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('aging_61_90', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('aging_91_plus', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('last_payment_date', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_patient_accounts_id'), 'patient_accounts', ['id'], unique=False)
    op.create_index(op.f('ix_patient_accounts_patient_id'), 'patient_accounts', ['patient_id'], unique=True)

    # Create era_files table
    op.create_table(
        'era_files',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False),
        sa.Column('provider_id', sa.String(length=100), nullable=True),
        sa.Column('uploaded_by', sa.String(length=100), nullable=False),
        sa.Column('line_count', sa.Integer(), nullable=False),
        sa.Column('total_paid', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total_adjustments', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('auto_post_requested', sa.Boolean(), nullable=False),
        sa.Column('auto_posted_count', sa.Integer(), nullable=False),
        sa.Column('status', era_file_status, nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_era_files_id'), 'era_files', ['id'], unique=False)
    op.create_index(op.f('ix_era_files_provider_id'), 'era_files', ['provider_id'], unique=False)
    op.create_index(op.f('ix_era_files_status'), 'era_files', ['status'], unique=False)

    # Create payments table
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('claim_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.String(length=50), nullable=False),
        sa.Column('era_file_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('method', sa.String(length=50), nullable=False),
        sa.Column('check_number', sa.String(length=50), nullable=True),
        sa.Column('adjustment_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('adjustment_reason', sa.String(length=255), nullable=True),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('posted_by', sa.String(length=100), nullable=False),
        sa.Column('posted_at', sa.DateTime(), nullable=False),
        sa.Column('reversed_by', sa.String(length=100), nullable=True),
        sa.Column('reversed_at', sa.DateTime(), nullable=True),
        sa.Column('reversal_reason', sa.String(length=255), nullable=True),
        sa.Column('reconciled', sa.Boolean(), nullable=False),
        sa.Column('reconciled_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['claim_id'], ['claims.id'], ),
        sa.ForeignKeyConstraint(['era_file_id'], ['era_files.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_id'), 'payments', ['id'], unique=False)
    op.create_index(op.f('ix_payments_claim_id'), 'payments', ['claim_id'], unique=False)
    op.create_index(op.f('ix_payments_patient_id'), 'payments', ['patient_id'], unique=False)
    op.create_index(op.f('ix_payments_era_file_id'), 'payments', ['era_file_id'], unique=False)
    op.create_index(op.f('ix_payments_status'), 'payments', ['status'], unique=False)
    op.create_index('ix_payments_claim_status', 'payments', ['claim_id', 'status'], unique=False)

    # Create era_payment_details table
    op.create_table(
        'era_payment_details',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('era_file_id', sa.Integer(), nullable=False),
        sa.Column('claim_id', sa.String(length=50), nullable=False),
        sa.Column('patient_id', sa.String(length=50), nullable=True),
        sa.Column('service_date', sa.Date(), nullable=True),
        sa.Column('allowed_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('adjustment_amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('reason_codes', sa.JSON(), nullable=True),
        sa.Column('check_number', sa.String(length=50), nullable=True),
        sa.Column('payer_name', sa.String(length=255), nullable=True),
        sa.Column('status', era_line_status, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['era_file_id'], ['era_files.id'], ),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_era_payment_details_id'), 'era_payment_details', ['id'], unique=False)
    op.create_index(op.f('ix_era_payment_details_era_file_id'), 'era_payment_details', ['era_file_id'], unique=False)
    op.create_index(op.f('ix_era_payment_details_claim_id'), 'era_payment_details', ['claim_id'], unique=False)

    # Create balance_transfers table
    op.create_table(
        'balance_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_patient_id', sa.String(length=50), nullable=False),
        sa.Column('to_patient_id', sa.String(length=50), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('initiated_by', sa.String(length=100), nullable=False),
        sa.Column('transferred_at', sa.DateTime(), nullable=False),
        sa.Column('status', transfer_status, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_balance_transfers_id'), 'balance_transfers', ['id'], unique=False)
    op.create_index(op.f('ix_balance_transfers_from_patient_id'), 'balance_transfers', ['from_patient_id'], unique=False)
    op.create_index(op.f('ix_balance_transfers_to_patient_id'), 'balance_transfers', ['to_patient_id'], unique=False)

    # Create audit_log_entries table
    op.create_table(
        'audit_log_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('table_name', sa.String(length=100), nullable=False),
        sa.Column('record_id', sa.String(length=100), nullable=False),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_log_entries_id'), 'audit_log_entries', ['id'], unique=False)
    op.create_index(op.f('ix_audit_log_entries_table_name'), 'audit_log_entries', ['table_name'], unique=False)
    op.create_index(op.f('ix_audit_log_entries_record_id'), 'audit_log_entries', ['record_id'], unique=False)
    op.create_index(op.f('ix_audit_log_entries_user_id'), 'audit_log_entries', ['user_id'], unique=False)
    op.create_index('ix_audit_log_entries_table_record', 'audit_log_entries', ['table_name', 'record_id'], unique=False)

    # Create named_locks table
    op.create_table(
        'named_locks',
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade() -> None:
    op.drop_table('named_locks')
    op.drop_index('ix_audit_log_entries_table_record', table_name='audit_log_entries')
    op.drop_index(op.f('ix_audit_log_entries_user_id'), table_name='audit_log_entries')
    op.drop_index(op.f('ix_audit_log_entries_record_id'), table_name='audit_log_entries')
    op.drop_index(op.f('ix_audit_log_entries_table_name'), table_name='audit_log_entries')
    op.drop_index(op.f('ix_audit_log_entries_id'), table_name='audit_log_entries')
    op.drop_table('audit_log_entries')
    op.drop_index(op.f('ix_balance_transfers_to_patient_id'), table_name='balance_transfers')
    op.drop_index(op.f('ix_balance_transfers_from_patient_id'), table_name='balance_transfers')
    op.drop_index(op.f('ix_balance_transfers_id'), table_name='balance_transfers')
    op.drop_table('balance_transfers')
    op.drop_index(op.f('ix_era_payment_details_claim_id'), table_name='era_payment_details')
    op.drop_index(op.f('ix_era_payment_details_era_file_id'), table_name='era_payment_details')
    op.drop_index(op.f('ix_era_payment_details_id'), table_name='era_payment_details')
    op.drop_table('era_payment_details')
    op.drop_index('ix_payments_claim_status', table_name='payments')
    op.drop_index(op.f('ix_payments_status'), table_name='payments')
    op.drop_index(op.f('ix_payments_era_file_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_patient_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_claim_id'), table_name='payments')
    op.drop_index(op.f('ix_payments_id'), table_name='payments')
    op.drop_table('payments')
    op.drop_index(op.f('ix_era_files_status'), table_name='era_files')
    op.drop_index(op.f('ix_era_files_provider_id'), table_name='era_files')
    op.drop_index(op.f('ix_era_files_id'), table_name='era_files')
    op.drop_table('era_files')
    op.drop_index(op.f('ix_patient_accounts_patient_id'), table_name='patient_accounts')
    op.drop_index(op.f('ix_patient_accounts_id'), table_name='patient_accounts')
    op.drop_table('patient_accounts')
    op.drop_index(op.f('ix_claims_status'), table_name='claims')
    op.drop_index(op.f('ix_claims_claim_control_number'), table_name='claims')
    op.drop_index(op.f('ix_claims_patient_id'), table_name='claims')
    op.drop_index(op.f('ix_claims_id'), table_name='claims')
    op.drop_table('claims')

    bind = op.get_bind()
    for enum_type in (audit_action, era_line_status, era_file_status, transfer_status, payment_status, claim_status):
        enum_type.drop(bind, checkfirst=True)
