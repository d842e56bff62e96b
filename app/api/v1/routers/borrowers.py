from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.schemas.borrower import (
    BorrowerCreate,
    BorrowerDTO,
    BorrowerStatusUpdate,
    BorrowerUpdate,
    CreditFactorsDTO,
    CreditLimitResponse,
    CreditScoreResponse,
    KycReviewRequest,
)
from app.schemas.loan import LoanDTO, PaymentDTO
from app.services import borrowers as borrower_service

router = APIRouter(prefix="/borrowers", tags=["borrowers"])


def _score_response(borrower_id: UUID, result, *, persisted: bool) -> CreditScoreResponse:
    return CreditScoreResponse(
        borrower_id=borrower_id,
        score=result.score,
        factors=CreditFactorsDTO(**result.factors.as_dict()),
        persisted=persisted,
    )


@router.post("", response_model=BorrowerDTO, status_code=status.HTTP_201_CREATED, summary="Register a borrower")
async def create_borrower(
    payload: BorrowerCreate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> BorrowerDTO:
    borrower = await borrower_service.create_borrower(db, actor, payload)
    return BorrowerDTO.model_validate(borrower)


@router.get("/{borrower_id}", response_model=BorrowerDTO, summary="Get a borrower")
async def get_borrower(
    borrower_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> BorrowerDTO:
    borrower = await borrower_service.get_borrower(db, borrower_id)
    return BorrowerDTO.model_validate(borrower)


@router.patch("/{borrower_id}", response_model=BorrowerDTO, summary="Edit a borrower profile")
async def update_borrower(
    borrower_id: UUID,
    payload: BorrowerUpdate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> BorrowerDTO:
    borrower = await borrower_service.update_borrower(db, actor, borrower_id, payload)
    return BorrowerDTO.model_validate(borrower)


@router.post("/{borrower_id}/kyc/review", response_model=BorrowerDTO, summary="Record a KYC decision")
async def review_kyc(
    borrower_id: UUID,
    payload: KycReviewRequest,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> BorrowerDTO:
    borrower = await borrower_service.review_kyc(
        db, actor, borrower_id, decision=payload.decision, notes=payload.notes
    )
    return BorrowerDTO.model_validate(borrower)


@router.post("/{borrower_id}/status", response_model=BorrowerDTO, summary="Change borrower status")
async def change_borrower_status(
    borrower_id: UUID,
    payload: BorrowerStatusUpdate,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> BorrowerDTO:
    borrower = await borrower_service.change_status(
        db, actor, borrower_id, status=payload.status, reason=payload.reason
    )
    return BorrowerDTO.model_validate(borrower)


@router.get("/{borrower_id}/credit-score", response_model=CreditScoreResponse, summary="Compute credit score")
async def get_credit_score(
    borrower_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> CreditScoreResponse:
    result = await borrower_service.compute_credit_score(db, borrower_id)
    return _score_response(borrower_id, result, persisted=False)


@router.post(
    "/{borrower_id}/credit-score/refresh",
    response_model=CreditScoreResponse,
    summary="Recompute and store credit score",
)
async def refresh_credit_score(
    borrower_id: UUID,
    actor: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> CreditScoreResponse:
    result = await borrower_service.refresh_credit_score(db, borrower_id, actor=actor)
    return _score_response(borrower_id, result, persisted=True)


@router.get("/{borrower_id}/credit-limit", response_model=CreditLimitResponse, summary="Compute lending limit")
async def get_credit_limit(
    borrower_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> CreditLimitResponse:
    limit = await borrower_service.compute_lending_limit(db, borrower_id)
    return CreditLimitResponse(borrower_id=borrower_id, **asdict(limit))


@router.get("/{borrower_id}/loans", response_model=list[LoanDTO], summary="Borrower loan history")
async def list_borrower_loans(
    borrower_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[LoanDTO]:
    loans = await borrower_service.list_borrower_loans(db, borrower_id)
    return [LoanDTO.model_validate(loan) for loan in loans]


@router.get("/{borrower_id}/payments", response_model=list[PaymentDTO], summary="Borrower payment history")
async def list_borrower_payments(
    borrower_id: UUID,
    _: deps.ActorContext = Depends(deps.get_actor),
    db: AsyncSession = Depends(deps.get_db_session),
) -> list[PaymentDTO]:
    payments = await borrower_service.list_borrower_payments(db, borrower_id)
    return [PaymentDTO.model_validate(payment) for payment in payments]
