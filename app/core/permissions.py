from enum import Enum

from app.core.errors import AuthorizationError


class Role(str, Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    LOAN_OFFICER = "loan_officer"
    CASHIER = "cashier"
    BORROWER = "borrower"
    AUDITOR = "auditor"


class Action(str, Enum):
    AUTH_CODE_ISSUE = "authorization_code.issue"
    LOAN_DISBURSE = "loan.disburse"
    PAYMENT_RECORD = "payment.record"
    KYC_REVIEW = "borrower.kyc_review"
    BORROWER_STATUS_MANAGE = "borrower.status_manage"
    APPLICATION_REVIEW = "loan_application.review"
    SETTINGS_MANAGE = "settings.manage"
    LOAN_CHANGE_REQUEST = "loan.change_request"
    LOAN_CHANGE_APPROVE = "loan.change_approve"
    LOAN_CLOSE = "loan.close"
    PAYMENT_REMIND = "loan.payment_remind"


ACTION_ROLES: dict[Action, frozenset[Role]] = {
    Action.AUTH_CODE_ISSUE: frozenset({Role.ADMIN, Role.MANAGER}),
    Action.LOAN_DISBURSE: frozenset({Role.ADMIN, Role.CASHIER}),
    Action.PAYMENT_RECORD: frozenset({Role.ADMIN, Role.CASHIER, Role.MANAGER, Role.LOAN_OFFICER}),
    Action.KYC_REVIEW: frozenset({Role.ADMIN, Role.MANAGER, Role.LOAN_OFFICER}),
    Action.BORROWER_STATUS_MANAGE: frozenset({Role.ADMIN, Role.MANAGER}),
    Action.APPLICATION_REVIEW: frozenset({Role.ADMIN, Role.MANAGER, Role.LOAN_OFFICER}),
    Action.SETTINGS_MANAGE: frozenset({Role.ADMIN}),
    Action.LOAN_CHANGE_REQUEST: frozenset({Role.ADMIN, Role.MANAGER, Role.LOAN_OFFICER}),
    Action.LOAN_CHANGE_APPROVE: frozenset({Role.ADMIN, Role.MANAGER}),
    Action.LOAN_CLOSE: frozenset({Role.ADMIN, Role.MANAGER, Role.CASHIER}),
    Action.PAYMENT_REMIND: frozenset({Role.ADMIN, Role.MANAGER, Role.LOAN_OFFICER, Role.CASHIER}),
}


def normalize_role(value: Role | str) -> Role:
    try:
        return value if isinstance(value, Role) else Role(str(value).strip().lower())
    except ValueError as exc:
        raise AuthorizationError(f"Unknown role: {value}") from exc


def require_role(role: Role | str, action: Action) -> Role:
    """Return the normalized role or raise if it may not perform ``action``."""
    normalized = normalize_role(role)
    if normalized not in ACTION_ROLES[action]:
        raise AuthorizationError(
            f"Role {normalized.value} is not permitted to perform {action.value}",
            details={"role": normalized.value, "action": action.value},
        )
    return normalized
