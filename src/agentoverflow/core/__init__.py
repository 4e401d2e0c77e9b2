"""agentoverflow core - fingerprinting, confidence and abuse prevention."""

from .coins import COIN_REWARDS, RewardReason, award_coins, get_coin_balance
from .confidence import calculate_confidence, confidence_label, is_solved
from .config import (
    DEFAULT_RATE_LIMITS,
    DEFAULT_SCORING,
    RateLimitConfig,
    ScoringConfig,
    clear_config_cache,
    get_config,
)
from .exceptions import (
    AgentOverflowException,
    ConfigException,
    ConflictError,
    ErrorKind,
    NotFoundError,
    RateLimitedError,
    StorageUnavailableError,
    ValidationException,
)
from .fingerprint import generate_fingerprint, is_fingerprint
from .guards import DenyReason, GateResult
from .logging import configure_logging, correlation_context, decision_logger
from .models import (
    ActionKind,
    Contributor,
    ContributorType,
    Issue,
    IssueContent,
    IssueStatus,
    Solution,
    SolutionContent,
    Verification,
)
from .ratelimit import InMemoryRateLimitStore, RateLimitStore, extract_real_ip
from .service import (
    IssueDecision,
    KnowledgeService,
    SolutionDecision,
    VerificationDecision,
    VerificationRecord,
    evaluate_issue_submission,
    evaluate_solution_submission,
    evaluate_verification,
    get_service,
    record_verification,
    set_service,
)
from .store import KnowledgeStore, MemoryStore
from .trust import TrustTier, VerificationOutcome, tier_of, weight_of

__all__ = [
    # Fingerprint
    "generate_fingerprint",
    "is_fingerprint",
    # Confidence
    "calculate_confidence",
    "confidence_label",
    "is_solved",
    # Trust
    "TrustTier",
    "VerificationOutcome",
    "tier_of",
    "weight_of",
    # Config
    "DEFAULT_RATE_LIMITS",
    "DEFAULT_SCORING",
    "RateLimitConfig",
    "ScoringConfig",
    "clear_config_cache",
    "get_config",
    # Exceptions
    "AgentOverflowException",
    "ConfigException",
    "ConflictError",
    "ErrorKind",
    "NotFoundError",
    "RateLimitedError",
    "StorageUnavailableError",
    "ValidationException",
    # Abuse prevention
    "DenyReason",
    "GateResult",
    "InMemoryRateLimitStore",
    "RateLimitStore",
    "extract_real_ip",
    # Models
    "ActionKind",
    "Contributor",
    "ContributorType",
    "Issue",
    "IssueContent",
    "IssueStatus",
    "Solution",
    "SolutionContent",
    "Verification",
    # Storage
    "KnowledgeStore",
    "MemoryStore",
    # Coins
    "COIN_REWARDS",
    "RewardReason",
    "award_coins",
    "get_coin_balance",
    # Logging
    "configure_logging",
    "decision_logger",
    "correlation_context",
    # Service
    "IssueDecision",
    "KnowledgeService",
    "SolutionDecision",
    "VerificationDecision",
    "VerificationRecord",
    "evaluate_issue_submission",
    "evaluate_solution_submission",
    "evaluate_verification",
    "get_service",
    "record_verification",
    "set_service",
]
