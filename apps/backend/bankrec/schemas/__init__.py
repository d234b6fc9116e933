from bankrec.schemas.accounts import (
    BankAccountCreate,
    BankAccountListResponse,
    BankAccountResponse,
    BankAccountUpdate,
)
from bankrec.schemas.base import BaseResponse, ListResponse
from bankrec.schemas.events import DispatchResult, LedgerEventResponse
from bankrec.schemas.matching import (
    MatchingStatistics,
    MatchListResponse,
    MatchResponse,
    PatternListResponse,
    PatternResponse,
    RejectRequest,
    ResolutionResponse,
    ResolveBatchRequest,
    ResolveBatchResponse,
    SplitAllocation,
    SplitMatchCreate,
    UnmatchRequest,
)
from bankrec.schemas.reconciliation import (
    DiscrepancyResolve,
    DiscrepancyResponse,
    ReconciliationCreate,
    ReconciliationListResponse,
    ReconciliationReport,
    ReconciliationResponse,
    UnlockRequest,
)
from bankrec.schemas.rules import (
    Criterion,
    MatchRuleCreate,
    MatchRuleListResponse,
    MatchRuleResponse,
    MatchRuleUpdate,
    RuleStatistics,
)
from bankrec.schemas.transactions import (
    BankTransactionListResponse,
    BankTransactionResponse,
    TransactionImportRequest,
    TransactionImportResponse,
    TransactionImportRow,
    TransactionStatusSummary,
)

__all__ = [
    "BaseResponse",
    "ListResponse",
    "BankAccountCreate",
    "BankAccountUpdate",
    "BankAccountResponse",
    "BankAccountListResponse",
    "TransactionImportRow",
    "TransactionImportRequest",
    "TransactionImportResponse",
    "BankTransactionResponse",
    "BankTransactionListResponse",
    "TransactionStatusSummary",
    "Criterion",
    "MatchRuleCreate",
    "MatchRuleUpdate",
    "MatchRuleResponse",
    "MatchRuleListResponse",
    "RuleStatistics",
    "SplitAllocation",
    "SplitMatchCreate",
    "RejectRequest",
    "UnmatchRequest",
    "ResolveBatchRequest",
    "MatchResponse",
    "MatchListResponse",
    "ResolutionResponse",
    "ResolveBatchResponse",
    "MatchingStatistics",
    "PatternResponse",
    "PatternListResponse",
    "ReconciliationCreate",
    "UnlockRequest",
    "DiscrepancyResolve",
    "DiscrepancyResponse",
    "ReconciliationResponse",
    "ReconciliationListResponse",
    "ReconciliationReport",
    "LedgerEventResponse",
    "DispatchResult",
]
