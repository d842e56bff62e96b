"""Add loan restructures, transfers and closures"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0002_loan_servicing"
down_revision = "0001_lending_core"
branch_labels = None
depends_on = None


def _change_request_columns() -> list[sa.Column]:
    return [
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("requested_by", sa.String(length=100), nullable=False),
        sa.Column("requested_by_id", sa.String(length=50), nullable=True),
        sa.Column("approved_by", sa.String(length=100), nullable=True),
        sa.Column("decided_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.add_column("loans", sa.Column("restructured_date", sa.Date(), nullable=True))
    op.add_column("loans", sa.Column("closed_date", sa.Date(), nullable=True))
    op.add_column("loans", sa.Column("closure_certificate_number", sa.String(length=50), nullable=True))
    op.create_unique_constraint("uq_loans_closure_certificate_number", "loans", ["closure_certificate_number"])
    op.drop_constraint("ck_loan_status", "loans", type_="check")
    op.create_check_constraint(
        "ck_loan_status", "loans", "status IN ('active', 'completed', 'defaulted', 'closed')"
    )

    op.create_table(
        "loan_restructures",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("restructure_type", sa.String(length=20), nullable=False, server_default="restructure"),
        sa.Column("new_term_months", sa.Integer(), nullable=False),
        sa.Column("new_interest_rate", sa.Numeric(6, 2), nullable=False),
        sa.Column("new_interest_type", sa.String(length=10), nullable=False),
        sa.Column("restructured_principal", sa.Numeric(14, 2), nullable=False),
        sa.Column("new_monthly_payment", sa.Numeric(14, 2), nullable=False),
        sa.Column("new_total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("previous_terms", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        *_change_request_columns(),
        sa.CheckConstraint("restructure_type IN ('restructure', 'refinance')", name="ck_loan_restructure_type"),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_loan_restructure_status"),
        sa.CheckConstraint("new_term_months > 0", name="ck_loan_restructure_term_positive"),
        sa.CheckConstraint("new_interest_rate >= 0", name="ck_loan_restructure_rate_nonneg"),
    )
    op.create_index("ix_loan_restructures_loan_id", "loan_restructures", ["loan_id"])
    op.create_index("ix_loan_restructures_status", "loan_restructures", ["status"])

    op.create_table(
        "loan_transfers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "from_borrower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("borrowers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "to_borrower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("borrowers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text(), nullable=False),
        *_change_request_columns(),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name="ck_loan_transfer_status"),
        sa.CheckConstraint("from_borrower_id <> to_borrower_id", name="ck_loan_transfer_distinct_borrowers"),
    )
    op.create_index("ix_loan_transfers_loan_id", "loan_transfers", ["loan_id"])
    op.create_index("ix_loan_transfers_status", "loan_transfers", ["status"])

    op.create_table(
        "loan_closures",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "loan_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loans.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "borrower_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("borrowers.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("closed_date", sa.Date(), nullable=False),
        sa.Column("closed_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("closed_by", sa.String(length=100), nullable=False),
        sa.Column("certificate_number", sa.String(length=50), nullable=False, unique=True),
        sa.Column("outstanding_at_closure", sa.Numeric(14, 2), nullable=False),
        sa.Column("penalty_at_closure", sa.Numeric(14, 2), nullable=False),
        sa.Column("settlement_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column(
            "settlement_payment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("payments.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.CheckConstraint("outstanding_at_closure >= 0", name="ck_loan_closure_outstanding_nonneg"),
        sa.CheckConstraint("penalty_at_closure >= 0", name="ck_loan_closure_penalty_nonneg"),
        sa.CheckConstraint("settlement_amount >= 0", name="ck_loan_closure_settlement_nonneg"),
    )
    op.create_index("ix_loan_closures_borrower_id", "loan_closures", ["borrower_id"])


def downgrade() -> None:
    op.drop_index("ix_loan_closures_borrower_id", table_name="loan_closures")
    op.drop_table("loan_closures")
    op.drop_index("ix_loan_transfers_status", table_name="loan_transfers")
    op.drop_index("ix_loan_transfers_loan_id", table_name="loan_transfers")
    op.drop_table("loan_transfers")
    op.drop_index("ix_loan_restructures_status", table_name="loan_restructures")
    op.drop_index("ix_loan_restructures_loan_id", table_name="loan_restructures")
    op.drop_table("loan_restructures")

    op.drop_constraint("ck_loan_status", "loans", type_="check")
    op.create_check_constraint("ck_loan_status", "loans", "status IN ('active', 'completed', 'defaulted')")
    op.drop_constraint("uq_loans_closure_certificate_number", "loans", type_="unique")
    op.drop_column("loans", "closure_certificate_number")
    op.drop_column("loans", "closed_date")
    op.drop_column("loans", "restructured_date")
