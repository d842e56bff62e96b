from app.models.audit_log import AuditLog
from app.models.authorization_code import AuthorizationCode
from app.models.borrower import Borrower
from app.models.loan import Loan
from app.models.loan_application import LoanApplication
from app.models.loan_approval import LoanApprovalRecord
from app.models.loan_closure import LoanClosure
from app.models.loan_restructure import LoanRestructure
from app.models.loan_transfer import LoanTransfer
from app.models.payment import Payment
from app.models.permission_settings import PermissionSettingsRecord

__all__ = [
    "AuditLog",
    "AuthorizationCode",
    "Borrower",
    "Loan",
    "LoanApplication",
    "LoanApprovalRecord",
    "LoanClosure",
    "LoanRestructure",
    "LoanTransfer",
    "Payment",
    "PermissionSettingsRecord",
]
