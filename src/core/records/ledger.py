"""
Credit ledger for subscription sessions and control visits.

Counters live as integer fields on the athlete profile document. Consuming
a credit is a read-modify-write on that one document, done inside an
optimistic transaction so two coach devices consuming at the same moment
can't both spend the last credit.
"""

import logging
from typing import Mapping, Optional

from ..events import (
    EVENT_CREDIT_CONSUMED,
    EVENT_CREDIT_EMPTY,
    EVENT_CREDIT_GRANTED,
    EVENT_SUBSCRIPTION_APPROVED,
    EVENT_SUBSCRIPTION_REJECTED,
    EventBus,
)
from .models import (
    ATHLETE_ROLE,
    USERS_COLLECTION,
    AthleteProfile,
    ConsumeResult,
    CreditCounter,
    RecordValidationError,
    SubscriptionStatus,
    athlete_path,
    counter_value,
    validate_identifier,
)
from .store import DocumentStore, Transaction, run_transaction

logger = logging.getLogger(__name__)


def _validate_total(counter: CreditCounter, total: int) -> None:
    if isinstance(total, bool) or not isinstance(total, int):
        raise RecordValidationError(f"{counter.value} total must be an integer")
    if total < 0:
        raise RecordValidationError(f"{counter.value} total cannot be negative")


class CreditLedger:
    """
    Guarded counters per athlete.

    Counters never go below zero: consuming from an empty counter returns
    an empty result and writes nothing.
    """

    def __init__(
        self,
        store: DocumentStore,
        max_attempts: int = 5,
        backoff_seconds: float = 0.0,
        events: Optional[EventBus] = None,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._events = events

    def consume(self, athlete_id: str, counter: CreditCounter) -> ConsumeResult:
        """
        Use one credit from counter.

        Returns ConsumeResult.empty() when nothing is left; otherwise the
        number of credits remaining after this one.
        """
        validate_identifier(athlete_id, "athlete_id")
        path = athlete_path(athlete_id)

        def body(transaction: Transaction) -> ConsumeResult:
            snapshot = transaction.get(path)
            current = counter_value(snapshot.data, counter)

            if current <= 0:
                return ConsumeResult.empty(counter)

            remaining = current - 1
            transaction.update(path, {counter.value: remaining})
            return ConsumeResult.consumed(counter, remaining)

        result = run_transaction(
            self._store,
            body,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
        )

        if result.is_empty:
            logger.info(
                "No credits left to consume",
                extra={"athlete_id": athlete_id, "counter": counter.value}
            )
            self._emit(EVENT_CREDIT_EMPTY, athlete_id=athlete_id, counter=counter)
        else:
            logger.info(
                "Credit consumed",
                extra={"athlete_id": athlete_id, "counter": counter.value, "remaining": result.remaining}
            )
            self._emit(
                EVENT_CREDIT_CONSUMED,
                athlete_id=athlete_id,
                counter=counter,
                remaining=result.remaining,
            )

        return result

    def grant(self, athlete_id: str, counter: CreditCounter, total: int) -> bool:
        """
        Set counter to total, regardless of its previous value.

        Used when a subscription plan is approved. Creates the profile
        document if it doesn't exist yet.
        """
        validate_identifier(athlete_id, "athlete_id")
        _validate_total(counter, total)

        self._write_profile(athlete_id, {counter.value: total})

        logger.info(
            "Credits granted",
            extra={"athlete_id": athlete_id, "counter": counter.value, "total": total}
        )
        self._emit(EVENT_CREDIT_GRANTED, athlete_id=athlete_id, counter=counter, total=total)
        return True

    def balance(self, athlete_id: str) -> dict[CreditCounter, int]:
        """Current value of every counter (0 when never granted)."""
        validate_identifier(athlete_id, "athlete_id")
        snapshot = self._store.read(athlete_path(athlete_id))
        return {counter: counter_value(snapshot.data, counter) for counter in CreditCounter}

    def list_athletes(
        self,
        status: SubscriptionStatus = SubscriptionStatus.APPROVED,
    ) -> list[AthleteProfile]:
        """
        Athletes whose subscription is in the given status.

        The coach panel lists PENDING athletes to review them and
        APPROVED ones to manage their credits.
        """
        snapshots = self._store.list_collection(USERS_COLLECTION)

        athletes = [
            AthleteProfile.from_document(snapshot.path.rsplit("/", 1)[-1], snapshot.data)
            for snapshot in snapshots
            if snapshot.data.get("status") == status.value
        ]
        athletes.sort(key=lambda athlete: athlete.athlete_id)

        logger.debug(
            "Listed athletes",
            extra={"status": status.value, "count": len(athletes)}
        )
        return athletes

    def approve_subscription(
        self,
        athlete_id: str,
        totals: Mapping[CreditCounter, int],
    ) -> None:
        """
        Approve an athlete's subscription and grant the plan's credits.

        The status change, the athlete role and every counter are written
        together. Deriving totals from a plan is the caller's business
        configuration.
        """
        validate_identifier(athlete_id, "athlete_id")
        for counter, total in totals.items():
            _validate_total(counter, total)

        fields = {"status": SubscriptionStatus.APPROVED.value, "role": ATHLETE_ROLE}
        fields.update({counter.value: total for counter, total in totals.items()})
        self._write_profile(athlete_id, fields)

        logger.info(
            "Subscription approved",
            extra={
                "athlete_id": athlete_id,
                "totals": {counter.value: total for counter, total in totals.items()},
            }
        )
        self._emit(EVENT_SUBSCRIPTION_APPROVED, athlete_id=athlete_id, totals=dict(totals))

    def reject_subscription(self, athlete_id: str) -> None:
        """Reject a subscription. Existing counters are left as they are."""
        validate_identifier(athlete_id, "athlete_id")

        self._write_profile(athlete_id, {"status": SubscriptionStatus.REJECTED.value})

        logger.info("Subscription rejected", extra={"athlete_id": athlete_id})
        self._emit(EVENT_SUBSCRIPTION_REJECTED, athlete_id=athlete_id)

    # -----------------------------------------------------------------------
    # Private Methods
    # -----------------------------------------------------------------------

    def _write_profile(self, athlete_id: str, fields: dict) -> None:
        path = athlete_path(athlete_id)

        def body(transaction: Transaction) -> None:
            transaction.set(path, fields, merge=True)

        run_transaction(
            self._store,
            body,
            max_attempts=self._max_attempts,
            backoff_seconds=self._backoff_seconds,
        )

    def _emit(self, event_name: str, **payload) -> None:
        if self._events:
            self._events.emit(event_name, **payload)
