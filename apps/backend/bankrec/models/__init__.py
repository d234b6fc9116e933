"""SQLAlchemy models package."""

from bankrec.models.event import LedgerEvent, LedgerEventKind
from bankrec.models.match import (
    ACTIVE_MATCH_STATUSES,
    BankTransactionMatch,
    ConfidenceTier,
    MatchSource,
    MatchSplit,
    MatchStatus,
)
from bankrec.models.pattern import MatchingPattern, PatternType
from bankrec.models.reconciliation import (
    OPEN_RECONCILIATION_STATUSES,
    BankReconciliation,
    DiscrepancyCategory,
    DiscrepancyKind,
    ReconciliationDiscrepancy,
    ReconciliationItem,
    ReconciliationStatus,
    ThreeWayReconciliation,
)
from bankrec.models.rule import AUTO_ACTIONS, MatchRule, RuleAction
from bankrec.models.transaction import (
    BankAccount,
    BankTransaction,
    ImportBatch,
    TransactionDirection,
    TransactionStatus,
)

__all__ = [
    "ACTIVE_MATCH_STATUSES",
    "AUTO_ACTIONS",
    "OPEN_RECONCILIATION_STATUSES",
    "BankAccount",
    "BankReconciliation",
    "BankTransaction",
    "BankTransactionMatch",
    "ConfidenceTier",
    "DiscrepancyCategory",
    "DiscrepancyKind",
    "ImportBatch",
    "LedgerEvent",
    "LedgerEventKind",
    "MatchRule",
    "MatchSource",
    "MatchSplit",
    "MatchStatus",
    "MatchingPattern",
    "PatternType",
    "ReconciliationDiscrepancy",
    "ReconciliationItem",
    "ReconciliationStatus",
    "RuleAction",
    "ThreeWayReconciliation",
    "TransactionDirection",
    "TransactionStatus",
]
