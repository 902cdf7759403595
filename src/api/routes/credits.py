"""
Credit ledger API endpoints.

Coaches consume an athlete's paid sessions and control visits as they
happen, and the subscription workflow grants credits when a plan is
approved. Consuming from an empty counter is a normal answer ("empty"),
not an error.

Handlers are sync functions: store calls and retry backoff block, so they
run in FastAPI's threadpool.
"""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from ...core.records.models import CreditCounter, SubscriptionStatus
from ..dependencies import AuthenticatedUser, CreditLedgerDep
from ..errors import HANDLED_ERRORS, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class ConsumeResponse(BaseModel):
    """Result of consuming one credit."""
    counter: CreditCounter = Field(description="Counter that was consumed")
    status: Literal["consumed", "empty"] = Field(description="'empty' when no credit was available")
    remaining: int = Field(description="Credits left after this request")


class GrantRequest(BaseModel):
    """Set a counter to a plan-derived total."""
    total: int = Field(ge=0, description="New counter value")


class GrantResponse(BaseModel):
    counter: CreditCounter
    granted: bool
    total: int


class BalanceResponse(BaseModel):
    """All counters for an athlete."""
    athlete_id: str
    credits: dict[str, int] = Field(description="Counter name to remaining credits")


class ApproveSubscriptionRequest(BaseModel):
    """Approve a subscription with the plan's credit totals."""
    credits: dict[CreditCounter, int] = Field(
        default_factory=dict,
        description="Counter totals derived from the approved plan",
    )


class SubscriptionResponse(BaseModel):
    athlete_id: str
    status: str


class AthleteItem(BaseModel):
    """An athlete in the coach panel."""
    athlete_id: str
    status: Optional[SubscriptionStatus] = None
    role: Optional[str] = None
    credits: dict[str, int]


class AthleteListResponse(BaseModel):
    athletes: list[AthleteItem]
    total: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=AthleteListResponse,
    status_code=status.HTTP_200_OK,
    summary="List athletes",
    description="Athletes whose subscription is in the given status (default: approved)",
)
def list_athletes(
    api_key: AuthenticatedUser,
    ledger: CreditLedgerDep,
    subscription_status: SubscriptionStatus = Query(
        default=SubscriptionStatus.APPROVED,
        alias="status",
        description="pending, approved or rejected",
    ),
) -> AthleteListResponse:
    """Pending athletes are the coach's review queue."""
    try:
        athletes = ledger.list_athletes(subscription_status)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "list athletes")

    items = [
        AthleteItem(
            athlete_id=athlete.athlete_id,
            status=athlete.status,
            role=athlete.role,
            credits={counter.value: value for counter, value in athlete.credits.items()},
        )
        for athlete in athletes
    ]
    return AthleteListResponse(athletes=items, total=len(items))


@router.post(
    "/{athlete_id}/credits/{counter}/consume",
    response_model=ConsumeResponse,
    status_code=status.HTTP_200_OK,
    summary="Consume one credit",
    description="Decrement a counter by one, unless it is already empty",
)
def consume_credit(
    athlete_id: str,
    counter: CreditCounter,
    api_key: AuthenticatedUser,
    ledger: CreditLedgerDep,
) -> ConsumeResponse:
    """
    Consume one credit.

    Callers must check status: 'empty' means no credit was used because
    none was left.
    """
    try:
        result = ledger.consume(athlete_id, counter)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "consume credit")

    return ConsumeResponse(
        counter=counter,
        status="empty" if result.is_empty else "consumed",
        remaining=result.remaining,
    )


@router.put(
    "/{athlete_id}/credits/{counter}",
    response_model=GrantResponse,
    status_code=status.HTTP_200_OK,
    summary="Grant credits",
    description="Set a counter to the given total",
)
def grant_credit(
    athlete_id: str,
    counter: CreditCounter,
    request: GrantRequest,
    api_key: AuthenticatedUser,
    ledger: CreditLedgerDep,
) -> GrantResponse:
    try:
        granted = ledger.grant(athlete_id, counter, request.total)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "grant credits")

    return GrantResponse(counter=counter, granted=granted, total=request.total)


@router.get(
    "/{athlete_id}/credits",
    response_model=BalanceResponse,
    status_code=status.HTTP_200_OK,
    summary="Get credit balance",
)
def get_balance(
    athlete_id: str,
    api_key: AuthenticatedUser,
    ledger: CreditLedgerDep,
) -> BalanceResponse:
    try:
        balance = ledger.balance(athlete_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "load credits")

    return BalanceResponse(
        athlete_id=athlete_id,
        credits={counter.value: value for counter, value in balance.items()},
    )


@router.post(
    "/{athlete_id}/subscription/approve",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Approve subscription",
    description="Mark the subscription approved and grant the plan's credits",
)
def approve_subscription(
    athlete_id: str,
    request: ApproveSubscriptionRequest,
    api_key: AuthenticatedUser,
    ledger: CreditLedgerDep,
) -> SubscriptionResponse:
    try:
        ledger.approve_subscription(athlete_id, request.credits)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "approve subscription")

    return SubscriptionResponse(athlete_id=athlete_id, status="approved")


@router.post(
    "/{athlete_id}/subscription/reject",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_200_OK,
    summary="Reject subscription",
)
def reject_subscription(
    athlete_id: str,
    api_key: AuthenticatedUser,
    ledger: CreditLedgerDep,
) -> SubscriptionResponse:
    try:
        ledger.reject_subscription(athlete_id)
    except HANDLED_ERRORS as e:
        raise to_http_exception(e, "reject subscription")

    return SubscriptionResponse(athlete_id=athlete_id, status="rejected")
