"""
Validation rule engine.

Owns a registry of rules and chains, evaluates them against a
ValidationContext, and keeps diagnostic statistics and a bounded history
of chain results.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import Counter, deque
from collections.abc import Iterable
from typing import Any

from meetingsync.config import MigrationConfig
from meetingsync.exceptions import ChainNotFoundError, RuleNotFoundError
from meetingsync.models import utc_now
from meetingsync.observability import Tracer, create_tracer
from meetingsync.observability.attributes import (
    ATTR_CHAIN_ID,
    ATTR_CHAIN_MODE,
    ATTR_RULE_ID,
    ATTR_RULE_LEVEL,
    ATTR_VALIDATION_PASSED,
)
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
from meetingsync.validation.rules import FULL_VALIDATION_CHAIN, builtin_chains, builtin_rules

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


class ValidationEngine:
    """
    Evaluates validation rules and chains.

    Rules are evaluated in bounded time: a rule that raises or exceeds its
    timeout yields a failed Critical result instead of propagating. In a
    parallel chain the enabled rules run concurrently and the results are
    placed by their position in the chain, so aggregation never depends on
    completion order.

    Example:
        >>> engine = ValidationEngine(enable_tracing=False)
        >>> result = await engine.validate_chain(
        ...     "pre_migration_chain", ValidationContext(projects=projects)
        ... )
        >>> result.passed
        True
    """

    def __init__(
        self,
        rules: Iterable[ValidationRule] | None = None,
        *,
        config: MigrationConfig | None = None,
        register_builtins: bool = True,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the engine.

        Args:
            rules: Extra rules to register after the built-ins.
            config: Migration config; supplies the rule timeout and the
                throughput threshold of the built-in speed rule.
            register_builtins: Register the built-in rules and chains.
            history_limit: Number of chain results kept in history.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._config = config or MigrationConfig()

        self._rules: dict[str, ValidationRule] = {}
        self._chains: dict[str, ValidationChain] = {}
        self._disabled: set[str] = set()
        self._stats: dict[str, RuleStatistics] = {}
        self._common_failures: Counter[str] = Counter()
        self._history: deque[ChainResult] = deque(maxlen=history_limit)

        if register_builtins:
            defaults = builtin_rules(self._config)
            for rule in defaults:
                self.register_rule(rule)
            for chain in builtin_chains(defaults):
                self.register_chain(chain)
        for rule in rules or ():
            self.register_rule(rule)

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register_rule(self, rule: ValidationRule) -> None:
        """Register a rule, replacing any rule with the same id."""
        if rule.id in self._rules:
            logger.debug("Replacing validation rule %s", rule.id)
        self._rules[rule.id] = rule
        self._stats.setdefault(rule.id, RuleStatistics())

    def register_chain(self, chain: ValidationChain) -> None:
        """
        Register a chain, replacing any chain with the same id.

        Raises:
            RuleNotFoundError: If the chain names an unregistered rule.
        """
        for rule_id in chain.rule_ids:
            if rule_id not in self._rules:
                raise RuleNotFoundError(rule_id)
        self._chains[chain.id] = chain

    def get_rule(self, rule_id: str) -> ValidationRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise RuleNotFoundError(rule_id) from None

    def get_chain(self, chain_id: str) -> ValidationChain:
        try:
            return self._chains[chain_id]
        except KeyError:
            raise ChainNotFoundError(chain_id) from None

    def list_rules(self, category: RuleCategory | None = None) -> list[ValidationRule]:
        return [r for r in self._rules.values() if category is None or r.category == category]

    def list_chains(self) -> list[ValidationChain]:
        return list(self._chains.values())

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> None:
        """Enable or disable a rule. Disabled rules produce no result."""
        self.get_rule(rule_id)
        if enabled:
            self._disabled.discard(rule_id)
        else:
            self._disabled.add(rule_id)
        logger.info("Validation rule %s %s", rule_id, "enabled" if enabled else "disabled")

    def is_enabled(self, rule_id: str) -> bool:
        return rule_id not in self._disabled

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    async def validate_rule(self, rule_id: str, data: ValidationContext) -> RuleResult | None:
        """
        Evaluate a single rule.

        Returns:
            The rule result, or None if the rule is disabled.

        Raises:
            RuleNotFoundError: If the rule is not registered.
        """
        rule = self.get_rule(rule_id)
        if not self.is_enabled(rule_id):
            return None
        return await self._evaluate(rule, data)

    async def validate_chain(self, chain_id: str, data: ValidationContext) -> ChainResult:
        """
        Evaluate a chain and record the result in history.

        Raises:
            ChainNotFoundError: If the chain is not registered.
        """
        chain = self.get_chain(chain_id)
        with self._tracer.span(
            "meetingsync.validation.validate_chain",
            {ATTR_CHAIN_ID: chain.id, ATTR_CHAIN_MODE: chain.mode.value},
        ) as span:
            result = await self._run_chain(chain, data)
            if span:
                span.set_attribute(ATTR_VALIDATION_PASSED, result.passed)

        self._history.append(result)
        log = logger.info if result.passed else logger.warning
        log(
            "Validation chain %s: %s",
            chain.id,
            result.summary,
            extra={"chain_id": chain.id, "passed": result.passed},
        )
        return result

    async def simulate(self, data: ValidationContext) -> SimulationResult:
        """
        Dry-run the full validation chain.

        Nothing is recorded: history and statistics are left untouched.
        """
        chain = self.get_chain(FULL_VALIDATION_CHAIN)
        result = await self._run_chain(chain, data, record=False)

        issues: list[str] = []
        recommendations: list[str] = []
        for rule_result in result.failures:
            issues.append(rule_result.message or f"Rule {rule_result.rule_id} failed")
            for suggestion in rule_result.suggestions:
                if suggestion not in recommendations:
                    recommendations.append(suggestion)

        return SimulationResult(
            would_pass=result.passed,
            issues=tuple(issues),
            recommendations=tuple(recommendations),
            chain_result=result,
        )

    async def _run_chain(
        self, chain: ValidationChain, data: ValidationContext, *, record: bool = True
    ) -> ChainResult:
        started = time.perf_counter()
        rules = [self._rules[rid] for rid in chain.rule_ids if self.is_enabled(rid)]
        stopped_early = False

        if chain.mode == ExecutionMode.PARALLEL:
            gathered = await asyncio.gather(*(self._evaluate(r, data, record=record) for r in rules))
            results = list(gathered)
        else:
            results = []
            for rule in rules:
                rule_result = await self._evaluate(rule, data, record=record)
                results.append(rule_result)
                if chain.stop_on_first_failure and rule_result.is_critical_failure:
                    logger.warning(
                        "Stopping chain %s on critical failure of %s: %s",
                        chain.id,
                        rule.id,
                        rule_result.message,
                    )
                    stopped_early = len(results) < len(rules)
                    break

        return ChainResult(
            chain_id=chain.id,
            results=tuple(results),
            duration_ms=(time.perf_counter() - started) * 1000,
            stopped_early=stopped_early,
        )

    async def _evaluate(
        self, rule: ValidationRule, data: ValidationContext, *, record: bool = True
    ) -> RuleResult:
        timeout = rule.timeout or self._config.rule_timeout
        started = time.perf_counter()

        with self._tracer.span(
            "meetingsync.validation.validate_rule",
            {ATTR_RULE_ID: rule.id, ATTR_RULE_LEVEL: rule.level.value},
        ):
            try:
                check = await asyncio.wait_for(self._invoke(rule, data), timeout=timeout)
            except TimeoutError:
                logger.error("Validation rule %s timed out after %.1fs", rule.id, timeout)
                check = RuleCheck(
                    passed=False,
                    message=f"Validation error: rule timed out after {timeout}s",
                )
                level = RuleLevel.CRITICAL
            except Exception as e:
                logger.error(
                    "Validation rule %s raised: %s",
                    rule.id,
                    e,
                    exc_info=True,
                    extra={"rule_id": rule.id},
                )
                check = RuleCheck(passed=False, message=f"Validation error: {e}")
                level = RuleLevel.CRITICAL
            else:
                level = rule.level

        duration_ms = (time.perf_counter() - started) * 1000
        result = RuleResult(
            rule_id=rule.id,
            rule_name=rule.name,
            level=level,
            passed=check.passed,
            message=check.message,
            details=dict(check.details),
            suggestions=tuple(check.suggestions),
            duration_ms=duration_ms,
        )
        if record:
            self._record(result)
        return result

    @staticmethod
    async def _invoke(rule: ValidationRule, data: ValidationContext) -> RuleCheck:
        outcome = rule.check(data)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def _record(self, result: RuleResult) -> None:
        stats = self._stats.setdefault(result.rule_id, RuleStatistics())
        if stats.executions == 0:
            stats.average_duration_ms = result.duration_ms
        else:
            stats.average_duration_ms = (stats.average_duration_ms + result.duration_ms) / 2
        stats.executions += 1
        stats.last_executed = utc_now()
        if not result.passed:
            stats.failures += 1
        if result.is_critical_failure:
            self._common_failures[result.rule_id] += 1

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def get_statistics(self) -> dict[str, Any]:
        """Per-rule counters, chain success rate and the most common critical failures."""
        total = len(self._history)
        passed = sum(1 for r in self._history if r.passed)
        return {
            "total_validations": total,
            "success_rate": (passed / total * 100) if total else 0.0,
            "rules": {rule_id: stats.to_dict() for rule_id, stats in self._stats.items()},
            "common_failures": dict(self._common_failures.most_common()),
        }

    def get_history(self, limit: int | None = None) -> list[ChainResult]:
        """Most recent chain results, oldest first."""
        history = list(self._history)
        return history[-limit:] if limit else history

    def reset(self) -> None:
        """Clear history and statistics."""
        self._history.clear()
        self._common_failures.clear()
        self._stats = {rule_id: RuleStatistics() for rule_id in self._rules}


__all__ = ["ValidationEngine", "DEFAULT_HISTORY_LIMIT"]
