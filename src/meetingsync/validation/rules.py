"""
Built-in validation rules and chains.

Rules are plain functions over a ValidationContext. ``builtin_rules()``
wraps them in ValidationRule records; ``builtin_chains()`` composes them
into the chains the migration orchestrator runs.
"""

from __future__ import annotations

from collections import Counter

from meetingsync.config import MigrationConfig
from meetingsync.models import ProjectPhase
from meetingsync.validation.models import (
    ExecutionMode,
    RuleCategory,
    RuleCheck,
    RuleLevel,
    ValidationChain,
    ValidationContext,
    ValidationRule,
)

PRE_MIGRATION_CHAIN = "pre_migration_chain"
POST_MIGRATION_CHAIN = "post_migration_chain"
FULL_VALIDATION_CHAIN = "full_validation_chain"


def check_data_exists(context: ValidationContext) -> RuleCheck:
    available = bool(context.projects) or bool(context.meetings)
    return RuleCheck(
        passed=available,
        message="Data exists for migration" if available else "No data available for migration",
        details={
            "project_count": len(context.projects),
            "meeting_count": len(context.meetings),
        },
        suggestions=() if available else ("Load projects before migrating",),
    )


def check_project_validity(context: ValidationContext) -> RuleCheck:
    if not context.projects:
        return RuleCheck(passed=True, message="No projects to validate")

    invalid = [p for p in context.projects if not p.id or p.id == "unknown" or not p.title]
    if not invalid:
        return RuleCheck(passed=True, message="All projects are valid")
    return RuleCheck(
        passed=False,
        message=f"Found {len(invalid)} invalid projects",
        details={"invalid_projects": [{"id": p.id, "title": p.title} for p in invalid]},
        suggestions=("Fix invalid project IDs", "Ensure all projects have titles"),
    )


def check_no_duplicates(context: ValidationContext) -> RuleCheck:
    if not context.meetings:
        return RuleCheck(passed=True, message="No meetings to check for duplicates")

    counts = Counter(m.id for m in context.meetings if m.id)
    duplicates = {meeting_id: n for meeting_id, n in counts.items() if n > 1}
    if not duplicates:
        return RuleCheck(passed=True, message="No duplicate meetings found")
    return RuleCheck(
        passed=False,
        message=f"Found {len(duplicates)} duplicate meeting IDs",
        details={"duplicate_ids": [{"id": k, "count": v} for k, v in sorted(duplicates.items())]},
        suggestions=("Remove duplicate entries", "Regenerate unique IDs"),
    )


def check_valid_phases(context: ValidationContext) -> RuleCheck:
    invalid = [p for p in context.projects if not ProjectPhase.is_valid(p.phase)]
    if not invalid:
        return RuleCheck(passed=True, message="All project phases are valid")
    return RuleCheck(
        passed=False,
        message=f"Found {len(invalid)} projects with an invalid phase",
        details={"projects": [{"id": p.id, "phase": p.phase} for p in invalid]},
        suggestions=(f"Reset invalid phases to '{ProjectPhase.CONTRACT_PENDING.value}'",),
    )


def check_data_consistency(context: ValidationContext) -> RuleCheck:
    stored = {s.id for s in context.schedules}
    missing = [schedule_id for schedule_id in context.migrated_ids if schedule_id not in stored]
    if not missing:
        return RuleCheck(
            passed=True,
            message="Data is consistent after migration",
            details={"migrated": len(context.migrated_ids)},
        )
    return RuleCheck(
        passed=False,
        message="Data inconsistency detected",
        details={"migrated": len(context.migrated_ids), "missing": missing},
        suggestions=("Run a health check", "Re-run the migration for the affected projects"),
    )


def check_no_data_loss(context: ValidationContext) -> RuleCheck:
    if context.before_count is None or context.after_count is None:
        return RuleCheck(passed=True, message="No counts to compare")

    before = context.before_count
    after = context.after_count
    expected_floor = before - context.reported_deletions
    details = {
        "before": before,
        "after": after,
        "difference": after - before,
        "reported_deletions": context.reported_deletions,
    }
    if after >= expected_floor:
        return RuleCheck(
            passed=True,
            message="No data loss detected",
            details={**details, "loss_percentage": 0.0},
        )

    loss_percentage = (expected_floor - after) / before * 100 if before else 100.0
    return RuleCheck(
        passed=False,
        message=f"Data loss detected: {loss_percentage:.1f}% lost",
        details={**details, "loss_percentage": loss_percentage},
        suggestions=("Investigate missing items", "Check migration filters", "Review error logs"),
    )


def speed_check(threshold: float):
    """Build the throughput rule for a given items-per-second threshold."""

    def check_migration_speed(context: ValidationContext) -> RuleCheck:
        if context.items_processed == 0 or context.duration_seconds <= 0:
            return RuleCheck(passed=True, message="No throughput to measure")

        rate = context.items_processed / context.duration_seconds
        details = {"items_per_second": rate, "threshold": threshold}
        if rate >= threshold:
            return RuleCheck(
                passed=True,
                message=f"Migration speed is good: {rate:.2f} items/sec",
                details=details,
            )
        return RuleCheck(
            passed=False,
            message=f"Migration is slow: {rate:.2f} items/sec",
            details=details,
            suggestions=("Consider batch size optimization", "Check system resources"),
        )

    return check_migration_speed


def builtin_rules(config: MigrationConfig | None = None) -> list[ValidationRule]:
    """Create the built-in rule set."""
    config = config or MigrationConfig()
    return [
        ValidationRule(
            id="pre_data_exists",
            name="Data Existence Check",
            category=RuleCategory.PRE_MIGRATION,
            level=RuleLevel.CRITICAL,
            check=check_data_exists,
            description="Check that there is data to migrate",
        ),
        ValidationRule(
            id="pre_project_validity",
            name="Project Validity Check",
            category=RuleCategory.PRE_MIGRATION,
            level=RuleLevel.WARNING,
            check=check_project_validity,
            description="Projects need a real id and a title",
        ),
        ValidationRule(
            id="pre_no_duplicates",
            name="Duplicate Detection",
            category=RuleCategory.PRE_MIGRATION,
            level=RuleLevel.WARNING,
            check=check_no_duplicates,
            description="Legacy meeting ids must be unique",
        ),
        ValidationRule(
            id="integrity_valid_phases",
            name="Phase Whitelist Check",
            category=RuleCategory.DATA_INTEGRITY,
            level=RuleLevel.WARNING,
            check=check_valid_phases,
            description="Project phases must be one of the known lifecycle phases",
        ),
        ValidationRule(
            id="post_data_consistency",
            name="Data Consistency Check",
            category=RuleCategory.POST_MIGRATION,
            level=RuleLevel.CRITICAL,
            check=check_data_consistency,
            description="Every schedule reported as migrated must be stored",
        ),
        ValidationRule(
            id="post_no_data_loss",
            name="Data Loss Detection",
            category=RuleCategory.POST_MIGRATION,
            level=RuleLevel.CRITICAL,
            check=check_no_data_loss,
            description="The schedule count must not drop during a migration",
        ),
        ValidationRule(
            id="perf_migration_speed",
            name="Migration Speed Check",
            category=RuleCategory.PERFORMANCE,
            level=RuleLevel.INFO,
            check=speed_check(config.min_items_per_second),
            description="Monitor migration throughput",
        ),
    ]


def builtin_chains(rules: list[ValidationRule]) -> list[ValidationChain]:
    """Create the built-in chains over a rule set."""
    return [
        ValidationChain(
            id=PRE_MIGRATION_CHAIN,
            name="Pre-migration Validation",
            rule_ids=(
                "pre_data_exists",
                "pre_project_validity",
                "pre_no_duplicates",
                "integrity_valid_phases",
            ),
            mode=ExecutionMode.SEQUENTIAL,
            stop_on_first_failure=True,
        ),
        ValidationChain(
            id=POST_MIGRATION_CHAIN,
            name="Post-migration Validation",
            rule_ids=("post_data_consistency", "post_no_data_loss", "perf_migration_speed"),
            mode=ExecutionMode.PARALLEL,
        ),
        ValidationChain(
            id=FULL_VALIDATION_CHAIN,
            name="Full Validation",
            rule_ids=tuple(rule.id for rule in rules),
            mode=ExecutionMode.SEQUENTIAL,
            stop_on_first_failure=False,
        ),
    ]


__all__ = [
    "PRE_MIGRATION_CHAIN",
    "POST_MIGRATION_CHAIN",
    "FULL_VALIDATION_CHAIN",
    "builtin_rules",
    "builtin_chains",
    "check_data_exists",
    "check_project_validity",
    "check_no_duplicates",
    "check_valid_phases",
    "check_data_consistency",
    "check_no_data_loss",
    "speed_check",
]
