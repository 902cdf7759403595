"""
Workout logging, personal-record tracking and the credit ledger.

Contains the domain models, the record policy, the services built on
optimistic transactions, and the store contract they rely on.
"""

from .ledger import CreditLedger
from .models import (
    ATHLETE_ROLE,
    HISTORY_CAP,
    AthleteProfile,
    ConsumeResult,
    CreditCounter,
    ExerciseObservation,
    ExerciseRecordState,
    RecordEvaluation,
    RecordMilestone,
    RecordValidationError,
    SubscriptionStatus,
    WorkoutRecord,
)
from .store import (
    SERVER_TIMESTAMP,
    CorruptDocumentError,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentSnapshot,
    DocumentStore,
    RecordStoreError,
    StoreUnavailableError,
    Transaction,
    TransactionAbortedError,
    TransactionConflictError,
    run_transaction,
)
from .tracker import PersonalRecordTracker
from .workouts import WorkoutLogger

__all__ = [
    "ATHLETE_ROLE",
    "HISTORY_CAP",
    "AthleteProfile",
    "SERVER_TIMESTAMP",
    "ConsumeResult",
    "CreditCounter",
    "CorruptDocumentError",
    "CreditLedger",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "DocumentSnapshot",
    "DocumentStore",
    "ExerciseObservation",
    "ExerciseRecordState",
    "PersonalRecordTracker",
    "RecordEvaluation",
    "RecordMilestone",
    "RecordStoreError",
    "RecordValidationError",
    "StoreUnavailableError",
    "SubscriptionStatus",
    "Transaction",
    "TransactionAbortedError",
    "TransactionConflictError",
    "WorkoutLogger",
    "WorkoutRecord",
    "run_transaction",
]
