"""
Validation rule engine.

- ValidationEngine: rule and chain registry with bounded-time evaluation
- ValidationRule / ValidationChain: rule and chain definitions
- ValidationContext: read-only data handed to rules
- builtin_rules / builtin_chains: the rules the migration orchestrator runs
"""

from meetingsync.validation.engine import ValidationEngine
from meetingsync.validation.models import (
    ChainResult,
    ExecutionMode,
    RuleCategory,
    RuleCheck,
    RuleLevel,
    RuleResult,
    RuleStatistics,
    SimulationResult,
    ValidationChain,
    ValidationContext,
    ValidationRule,
)
from meetingsync.validation.rules import (
    FULL_VALIDATION_CHAIN,
    POST_MIGRATION_CHAIN,
    PRE_MIGRATION_CHAIN,
    builtin_chains,
    builtin_rules,
)

__all__ = [
    "ValidationEngine",
    "ValidationContext",
    "ValidationRule",
    "ValidationChain",
    "RuleCategory",
    "RuleLevel",
    "RuleCheck",
    "RuleResult",
    "RuleStatistics",
    "ChainResult",
    "SimulationResult",
    "ExecutionMode",
    "PRE_MIGRATION_CHAIN",
    "POST_MIGRATION_CHAIN",
    "FULL_VALIDATION_CHAIN",
    "builtin_rules",
    "builtin_chains",
]
