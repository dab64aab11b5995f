"""
Unit tests for the validation rule engine.

Tests for:
- Rule registry and chain registration
- Sequential chains with stop-on-first-failure
- Parallel chains keep chain order regardless of completion order
- Rules that raise or time out become critical failures
- Disabled rules, statistics, history and simulation
"""

from __future__ import annotations

import asyncio

import pytest

from meetingsync.config import MigrationConfig
from meetingsync.exceptions import ChainNotFoundError, RuleNotFoundError
from meetingsync.observability import MockTracer
from meetingsync.validation import (
    FULL_VALIDATION_CHAIN,
    POST_MIGRATION_CHAIN,
    PRE_MIGRATION_CHAIN,
    ExecutionMode,
    RuleCategory,
    RuleCheck,
    RuleLevel,
    ValidationChain,
    ValidationContext,
    ValidationEngine,
    ValidationRule,
)
from tests.fixtures import make_meeting, make_project

# ============================================================================
# Helpers
# ============================================================================


def rule(
    rule_id: str,
    passed: bool = True,
    level: RuleLevel = RuleLevel.CRITICAL,
    **kwargs,
) -> ValidationRule:
    return ValidationRule(
        id=rule_id,
        name=rule_id.replace("_", " ").title(),
        category=RuleCategory.BUSINESS_RULE,
        level=level,
        check=lambda context: RuleCheck(passed=passed, message=f"{rule_id} checked"),
        **kwargs,
    )


def delayed_rule(rule_id: str, delay: float) -> ValidationRule:
    async def check(context: ValidationContext) -> RuleCheck:
        await asyncio.sleep(delay)
        return RuleCheck(passed=True, message=rule_id)

    return ValidationRule(
        id=rule_id,
        name=rule_id,
        category=RuleCategory.PERFORMANCE,
        level=RuleLevel.INFO,
        check=check,
    )


@pytest.fixture
def engine() -> ValidationEngine:
    return ValidationEngine(register_builtins=False, enable_tracing=False)


@pytest.fixture
def builtin_engine() -> ValidationEngine:
    return ValidationEngine(enable_tracing=False)


# ============================================================================
# Registry
# ============================================================================


class TestRegistry:
    def test_builtins_are_registered(self, builtin_engine):
        chain_ids = {c.id for c in builtin_engine.list_chains()}
        assert {PRE_MIGRATION_CHAIN, POST_MIGRATION_CHAIN, FULL_VALIDATION_CHAIN} <= chain_ids
        assert builtin_engine.get_rule("pre_data_exists").level == RuleLevel.CRITICAL

    def test_list_rules_by_category(self, builtin_engine):
        post = builtin_engine.list_rules(RuleCategory.POST_MIGRATION)
        assert {r.id for r in post} == {"post_data_consistency", "post_no_data_loss"}

    def test_unknown_rule_raises(self, engine):
        with pytest.raises(RuleNotFoundError):
            engine.get_rule("missing")

    def test_unknown_chain_raises(self, engine):
        with pytest.raises(ChainNotFoundError):
            engine.get_chain("missing")

    def test_chain_with_unknown_rule_is_rejected(self, engine):
        with pytest.raises(RuleNotFoundError):
            engine.register_chain(ValidationChain(id="c", name="c", rule_ids=("missing",)))


# ============================================================================
# Chains
# ============================================================================


class TestSequentialChains:
    @pytest.mark.asyncio
    async def test_stops_on_first_critical_failure(self, engine):
        for r in (rule("a"), rule("b", passed=False), rule("c")):
            engine.register_rule(r)
        engine.register_chain(
            ValidationChain(id="seq", name="seq", rule_ids=("a", "b", "c"), stop_on_first_failure=True)
        )

        result = await engine.validate_chain("seq", ValidationContext())

        assert [r.rule_id for r in result.results] == ["a", "b"]
        assert result.stopped_early
        assert not result.passed

    @pytest.mark.asyncio
    async def test_warning_failures_do_not_fail_the_chain(self, engine):
        engine.register_rule(rule("warn", passed=False, level=RuleLevel.WARNING))
        engine.register_rule(rule("ok"))
        engine.register_chain(ValidationChain(id="seq", name="seq", rule_ids=("warn", "ok")))

        result = await engine.validate_chain("seq", ValidationContext())

        assert result.passed
        assert result.warnings == 1
        assert result.summary == "1/2 rules passed, 0 critical failures, 1 warnings"

    @pytest.mark.asyncio
    async def test_continues_without_stop_on_first_failure(self, engine):
        for r in (rule("a", passed=False), rule("b")):
            engine.register_rule(r)
        engine.register_chain(ValidationChain(id="seq", name="seq", rule_ids=("a", "b")))

        result = await engine.validate_chain("seq", ValidationContext())

        assert result.total == 2
        assert result.critical_failures == 1
        assert not result.stopped_early


class TestParallelChains:
    @pytest.mark.asyncio
    async def test_results_follow_chain_order(self, engine):
        engine.register_rule(delayed_rule("slow", 0.05))
        engine.register_rule(delayed_rule("fast", 0.0))
        engine.register_chain(
            ValidationChain(
                id="par", name="par", rule_ids=("slow", "fast"), mode=ExecutionMode.PARALLEL
            )
        )

        result = await engine.validate_chain("par", ValidationContext())

        assert [r.rule_id for r in result.results] == ["slow", "fast"]


# ============================================================================
# Bounded evaluation
# ============================================================================


class TestBoundedEvaluation:
    @pytest.mark.asyncio
    async def test_raising_rule_becomes_critical_failure(self, engine):
        def explode(context: ValidationContext) -> RuleCheck:
            raise RuntimeError("kaboom")

        engine.register_rule(
            ValidationRule(
                id="boom",
                name="boom",
                category=RuleCategory.BUSINESS_RULE,
                level=RuleLevel.INFO,
                check=explode,
            )
        )

        result = await engine.validate_rule("boom", ValidationContext())

        assert result is not None
        assert not result.passed
        assert result.level == RuleLevel.CRITICAL
        assert "kaboom" in result.message

    @pytest.mark.asyncio
    async def test_slow_rule_times_out(self):
        engine = ValidationEngine(
            config=MigrationConfig(rule_timeout=0.01),
            register_builtins=False,
            enable_tracing=False,
        )
        engine.register_rule(delayed_rule("sleepy", 1.0))

        result = await engine.validate_rule("sleepy", ValidationContext())

        assert result is not None
        assert result.is_critical_failure
        assert "timed out" in result.message

    @pytest.mark.asyncio
    async def test_disabled_rule_produces_no_result(self, engine):
        engine.register_rule(rule("a", passed=False))
        engine.register_rule(rule("b"))
        engine.register_chain(ValidationChain(id="c", name="c", rule_ids=("a", "b")))
        engine.set_rule_enabled("a", False)

        assert await engine.validate_rule("a", ValidationContext()) is None
        result = await engine.validate_chain("c", ValidationContext())
        assert [r.rule_id for r in result.results] == ["b"]
        assert result.passed


# ============================================================================
# Diagnostics
# ============================================================================


class TestDiagnostics:
    @pytest.mark.asyncio
    async def test_statistics_and_history(self, engine):
        engine.register_rule(rule("bad", passed=False))
        engine.register_chain(ValidationChain(id="c", name="c", rule_ids=("bad",)))

        await engine.validate_chain("c", ValidationContext())
        await engine.validate_chain("c", ValidationContext())

        stats = engine.get_statistics()
        assert stats["total_validations"] == 2
        assert stats["success_rate"] == 0.0
        assert stats["rules"]["bad"]["executions"] == 2
        assert stats["rules"]["bad"]["failures"] == 2
        assert stats["common_failures"] == {"bad": 2}
        assert len(engine.get_history(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_reset_clears_history_and_statistics(self, engine):
        engine.register_rule(rule("a"))
        engine.register_chain(ValidationChain(id="c", name="c", rule_ids=("a",)))
        await engine.validate_chain("c", ValidationContext())

        engine.reset()

        assert engine.get_history() == []
        assert engine.get_statistics()["rules"]["a"]["executions"] == 0

    @pytest.mark.asyncio
    async def test_simulate_records_nothing(self, builtin_engine):
        result = await builtin_engine.simulate(ValidationContext())

        assert not result.would_pass
        assert "No data available for migration" in result.issues
        assert "Load projects before migrating" in result.recommendations
        assert builtin_engine.get_history() == []
        assert builtin_engine.get_statistics()["rules"]["pre_data_exists"]["executions"] == 0

    @pytest.mark.asyncio
    async def test_simulate_passes_on_clean_data(self, builtin_engine):
        project = make_project("P1", meetings=[make_meeting("M1", "P1")])
        result = await builtin_engine.simulate(
            ValidationContext(projects=[project], meetings=project.meetings)
        )
        assert result.would_pass

    @pytest.mark.asyncio
    async def test_chain_span_is_recorded(self):
        tracer = MockTracer()
        engine = ValidationEngine(tracer=tracer)

        await engine.validate_chain(PRE_MIGRATION_CHAIN, ValidationContext())

        assert "meetingsync.validation.validate_chain" in tracer.span_names
        assert "meetingsync.validation.validate_rule" in tracer.span_names
