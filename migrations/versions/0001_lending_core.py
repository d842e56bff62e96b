"""Create lending core tables"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_lending_core"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "borrowers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=150), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("employment", sa.String(length=255), nullable=True),
        sa.Column("monthly_income", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("monthly_expenses", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("existing_debts", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("kyc_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("kyc_reviewed_by", sa.String(length=100), nullable=True),
        sa.Column("kyc_reviewed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("credit_score", sa.Integer(), nullable=False, server_default="650"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("registration_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("monthly_income >= 0", name="ck_borrower_income_nonneg"),
        sa.CheckConstraint("monthly_expenses >= 0", name="ck_borrower_expenses_nonneg"),
        sa.CheckConstraint("existing_debts >= 0", name="ck_borrower_debts_nonneg"),
        sa.CheckConstraint("credit_score BETWEEN 300 AND 850", name="ck_borrower_credit_score_range"),
        sa.CheckConstraint(
            "kyc_status IN ('pending', 'submitted', 'verified', 'rejected')",
            name="ck_borrower_kyc_status",
        ),
        sa.CheckConstraint("status IN ('active', 'inactive', 'blacklisted')", name="ck_borrower_status"),
    )
    op.create_index("ix_borrowers_email", "borrowers", ["email"])
    op.create_index("ix_borrowers_status", "borrowers", ["status"])

    op.create_table(
        "loan_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "borrower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("borrowers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("loan_type", sa.String(length=50), nullable=False),
        sa.Column("requested_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("purpose", sa.Text(), nullable=False),
        sa.Column("collateral_type", sa.String(length=100), nullable=True),
        sa.Column("collateral_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("guarantor_name", sa.String(length=200), nullable=True),
        sa.Column("guarantor_phone", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("application_date", sa.Date(), nullable=False),
        sa.Column("credit_score", sa.Integer(), nullable=False),
        sa.Column("eligibility_status", sa.String(length=20), nullable=True),
        sa.Column("eligibility_score", sa.Integer(), nullable=True),
        sa.Column("risk_tier", sa.String(length=10), nullable=True),
        sa.Column("income_ratio", sa.Numeric(10, 2), nullable=True),
        sa.Column("debt_to_income", sa.Numeric(10, 2), nullable=True),
        sa.Column("recommendation", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(length=100), nullable=True),
        sa.Column("review_date", sa.Date(), nullable=True),
        sa.Column("approved_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("interest_rate", sa.Numeric(6, 2), nullable=True),
        sa.Column("term_months", sa.Integer(), nullable=True),
        sa.Column("interest_type", sa.String(length=10), nullable=False, server_default="compound"),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("penalty_rate", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("penalty_flat", sa.Numeric(14, 2), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("requested_amount > 0", name="ck_loan_app_requested_positive"),
        sa.CheckConstraint("approved_amount IS NULL OR approved_amount > 0", name="ck_loan_app_approved_positive"),
        sa.CheckConstraint("interest_rate IS NULL OR interest_rate >= 0", name="ck_loan_app_rate_nonneg"),
        sa.CheckConstraint("term_months IS NULL OR term_months > 0", name="ck_loan_app_term_positive"),
        sa.CheckConstraint("grace_period_days >= 0", name="ck_loan_app_grace_nonneg"),
        sa.CheckConstraint("penalty_rate >= 0", name="ck_loan_app_penalty_rate_nonneg"),
        sa.CheckConstraint("penalty_flat >= 0", name="ck_loan_app_penalty_flat_nonneg"),
        sa.CheckConstraint(
            "status IN ('pending', 'under_review', 'approved', 'rejected', 'disbursed')",
            name="ck_loan_app_status",
        ),
        sa.CheckConstraint("interest_type IN ('simple', 'compound')", name="ck_loan_app_interest_type"),
        sa.CheckConstraint(
            "risk_tier IS NULL OR risk_tier IN ('low', 'medium', 'high')",
            name="ck_loan_app_risk_tier",
        ),
    )
    op.create_index("ix_loan_applications_borrower_id", "loan_applications", ["borrower_id"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])

    op.create_table(
        "loan_approval_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("approval_stage", sa.String(length=20), nullable=False),
        sa.Column("decision", sa.String(length=20), nullable=False),
        sa.Column("decided_by", sa.String(length=100), nullable=False),
        sa.Column("decided_by_id", sa.String(length=50), nullable=True),
        sa.Column("decider_role", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint("application_id", "approval_stage", name="uq_loan_approval_stage"),
        sa.CheckConstraint(
            "approval_stage IN ('loan_officer', 'manager', 'cashier')",
            name="ck_loan_approval_stage",
        ),
        sa.CheckConstraint("decision IN ('approved', 'rejected')", name="ck_loan_approval_decision"),
    )
    op.create_index("ix_loan_approval_records_application_id", "loan_approval_records", ["application_id"])

    op.create_table(
        "authorization_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column("created_by", sa.String(length=100), nullable=False),
        sa.Column("created_role", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("used_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("superseded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.UniqueConstraint("application_id", "generation", name="uq_authorization_code_generation"),
    )
    op.create_index("ix_authorization_codes_application_id", "authorization_codes", ["application_id"])
    op.create_index(
        "ix_authorization_codes_app_active",
        "authorization_codes",
        ["application_id", "used_at", "superseded_at"],
    )

    op.create_table(
        "loans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="RESTRICT"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "borrower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("borrowers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("loan_type", sa.String(length=50), nullable=False),
        sa.Column("principal_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("interest_rate", sa.Numeric(6, 2), nullable=False),
        sa.Column("term_months", sa.Integer(), nullable=False),
        sa.Column("interest_type", sa.String(length=10), nullable=False, server_default="compound"),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("penalty_rate", sa.Numeric(6, 2), nullable=False, server_default="0"),
        sa.Column("penalty_flat", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("monthly_payment", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("outstanding_balance", sa.Numeric(14, 2), nullable=False),
        sa.Column("next_due_date", sa.Date(), nullable=True),
        sa.Column("disbursed_date", sa.Date(), nullable=False),
        sa.Column("disbursed_by", sa.String(length=100), nullable=False),
        sa.Column("disbursement_method", sa.String(length=50), nullable=False),
        sa.Column("reference_number", sa.String(length=100), nullable=True),
        sa.Column("receipt_number", sa.String(length=100), nullable=False, unique=True),
        sa.Column("disbursement_meta", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("principal_amount > 0", name="ck_loan_principal_positive"),
        sa.CheckConstraint("interest_rate >= 0", name="ck_loan_rate_nonneg"),
        sa.CheckConstraint("term_months > 0", name="ck_loan_term_positive"),
        sa.CheckConstraint("outstanding_balance >= 0", name="ck_loan_outstanding_nonneg"),
        sa.CheckConstraint("status IN ('active', 'completed', 'defaulted')", name="ck_loan_status"),
    )
    op.create_index("ix_loans_borrower_id", "loans", ["borrower_id"])
    op.create_index("ix_loans_status", "loans", ["status"])

    op.create_table(
        "payments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="paid"),
        sa.Column("late_fee", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("received_by", sa.String(length=100), nullable=False),
        sa.Column("receipt_number", sa.String(length=100), nullable=False, unique=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        sa.CheckConstraint("late_fee >= 0", name="ck_payment_late_fee_nonneg"),
        sa.CheckConstraint("status IN ('paid', 'late', 'pending')", name="ck_payment_status"),
    )
    op.create_index("ix_payments_loan_id", "payments", ["loan_id"])

    op.create_table(
        "permission_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("override_limit", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column(
            "allow_loan_officer_manager_override",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column("bypass_manager_approval", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("bypass_loan_officer_approval", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("updated_by", sa.String(length=100), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("actor_id", sa.String(length=100), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_resource_id", "audit_logs", ["resource_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_resource_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("permission_settings")
    op.drop_index("ix_payments_loan_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_loans_status", table_name="loans")
    op.drop_index("ix_loans_borrower_id", table_name="loans")
    op.drop_table("loans")
    op.drop_index("ix_authorization_codes_app_active", table_name="authorization_codes")
    op.drop_index("ix_authorization_codes_application_id", table_name="authorization_codes")
    op.drop_table("authorization_codes")
    op.drop_index("ix_loan_approval_records_application_id", table_name="loan_approval_records")
    op.drop_table("loan_approval_records")
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_borrower_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_index("ix_borrowers_status", table_name="borrowers")
    op.drop_index("ix_borrowers_email", table_name="borrowers")
    op.drop_table("borrowers")
