from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.loan import (
    ApprovalDecisionRequest,
    ApprovalOutcomeDTO,
    ApprovalRecordDTO,
    AuthorizationCodeConsumed,
    AuthorizationCodeConsumeRequest,
    AuthorizationCodeIssued,
    DisbursementRequest,
    LoanApplicationCreate,
    LoanApplicationDTO,
    LoanApplicationListResponse,
    LoanApplicationStatus,
    LoanApplicationUpdate,
    LoanDTO,
)
from app.services import approval_workflow, authorization_codes, disbursement
from app.services import loan_applications as application_service

router = APIRouter(prefix="/loan-applications", tags=["loan-applications"])


@router.post(
    "",
    response_model=LoanApplicationDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Create a loan application",
)
async def create_application(
    payload: LoanApplicationCreate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationDTO:
    application = await application_service.create_application(db, actor, payload)
    return LoanApplicationDTO.model_validate(application)


@router.get("", response_model=LoanApplicationListResponse, summary="List loan applications")
async def list_applications(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    status_filter: list[LoanApplicationStatus] | None = Query(default=None, alias="status"),
    borrower_id: UUID | None = Query(default=None),
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationListResponse:
    statuses = [item.value for item in status_filter] if status_filter else None
    items, total = await application_service.list_applications(
        db, limit=limit, offset=offset, statuses=statuses, borrower_id=borrower_id
    )
    return LoanApplicationListResponse(
        items=[LoanApplicationDTO.model_validate(item) for item in items],
        total=total,
    )


@router.get("/{application_id}", response_model=LoanApplicationDTO, summary="Get a loan application")
async def get_application(
    application_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationDTO:
    application = await application_service.get_application(db, application_id)
    return LoanApplicationDTO.model_validate(application)


@router.patch("/{application_id}", response_model=LoanApplicationDTO, summary="Update review fields")
async def update_application(
    application_id: UUID,
    payload: LoanApplicationUpdate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanApplicationDTO:
    application = await application_service.update_application(db, actor, application_id, payload)
    return LoanApplicationDTO.model_validate(application)


@router.post(
    "/{application_id}/approvals",
    response_model=ApprovalOutcomeDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Record an approval stage decision",
)
async def record_approval(
    application_id: UUID,
    payload: ApprovalDecisionRequest,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> ApprovalOutcomeDTO:
    outcome = await approval_workflow.record_decision(
        db,
        actor,
        application_id,
        approval_stage=payload.approval_stage,
        decision=payload.decision,
        decided_by=payload.decided_by,
        notes=payload.notes,
    )
    return ApprovalOutcomeDTO(
        record=ApprovalRecordDTO.model_validate(outcome.record),
        application_status=outcome.application_status,
        required_stages=list(outcome.required_stages),
    )


@router.get(
    "/{application_id}/approvals",
    response_model=list[ApprovalRecordDTO],
    summary="List approval records",
)
async def list_approvals(
    application_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[ApprovalRecordDTO]:
    await application_service.get_application(db, application_id)
    records = await approval_workflow.list_approvals(db, application_id)
    return [ApprovalRecordDTO.model_validate(record) for record in records]


@router.post(
    "/{application_id}/authorization-codes",
    response_model=AuthorizationCodeIssued,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a disbursement authorization code",
)
async def issue_authorization_code(
    application_id: UUID,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AuthorizationCodeIssued:
    issued = await authorization_codes.issue_code(db, actor, application_id)
    return AuthorizationCodeIssued(
        application_id=issued.application_id,
        code=issued.code,
        generation=issued.generation,
        expires_at=issued.expires_at,
    )


@router.post(
    "/{application_id}/authorization-codes/consume",
    response_model=AuthorizationCodeConsumed,
    summary="Redeem an authorization code",
)
async def consume_authorization_code(
    application_id: UUID,
    payload: AuthorizationCodeConsumeRequest,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> AuthorizationCodeConsumed:
    record = await authorization_codes.consume_code(db, actor, application_id, payload.code)
    return AuthorizationCodeConsumed(application_id=application_id, used_at=record.used_at)


@router.post(
    "/{application_id}/disbursement",
    response_model=LoanDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Disburse an approved application",
)
async def disburse_application(
    application_id: UUID,
    payload: DisbursementRequest,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> LoanDTO:
    loan = await disbursement.disburse(db, actor, application_id, payload)
    return LoanDTO.model_validate(loan)
