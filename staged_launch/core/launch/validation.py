"""Launch Validator.

Stateless pre-flight gate run before trusting a stage transition. Every
check contributes errors, warnings or recommendations independently; only
errors block the launch. The result is always fully populated so that a
report can be rendered from it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from staged_launch.core.launch.hooks import RollbackHookRegistry
from staged_launch.core.launch.models import LaunchMetrics, LaunchStage
from staged_launch.core.launch.registry import StageRegistry

logger = logging.getLogger(__name__)

ENDPOINT_PREFIX = "endpoint:"


def endpoint_check_key(endpoint: str) -> str:
    """Key under which an endpoint probe result is reported."""
    return f"{ENDPOINT_PREFIX}{endpoint}"


@dataclass(frozen=True)
class TestRunCounts:
    __test__ = False

    passed: int = 0
    failed: int = 0


@dataclass(frozen=True)
class UnitTestResults(TestRunCounts):
    coverage: float = 0.0


@dataclass(frozen=True)
class PerformanceSample:
    response_time_ms: float
    success_rate: float


@dataclass(frozen=True)
class TestResults:
    """Test snapshot supplied by the caller; never computed here."""

    __test__ = False

    unit_tests: UnitTestResults = field(default_factory=UnitTestResults)
    integration_tests: TestRunCounts = field(default_factory=TestRunCounts)
    e2e_tests: TestRunCounts = field(default_factory=TestRunCounts)
    contract_tests: TestRunCounts = field(default_factory=TestRunCounts)
    performance_tests: Optional[PerformanceSample] = None

    @property
    def coverage(self) -> float:
        return self.unit_tests.coverage

    @property
    def total_failed(self) -> int:
        return (
            self.unit_tests.failed
            + self.integration_tests.failed
            + self.e2e_tests.failed
            + self.contract_tests.failed
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TestResults":
        """Create from dictionary."""
        performance = data.get("performance_tests")
        return cls(
            unit_tests=UnitTestResults(**data.get("unit_tests", {})),
            integration_tests=TestRunCounts(**data.get("integration_tests", {})),
            e2e_tests=TestRunCounts(**data.get("e2e_tests", {})),
            contract_tests=TestRunCounts(**data.get("contract_tests", {})),
            performance_tests=PerformanceSample(**performance) if performance else None,
        )


@dataclass(frozen=True)
class StageRequirements:
    """Pre-flight thresholds for entering a stage."""

    min_coverage: float
    required_endpoints: Tuple[str, ...]
    max_response_time_ms: float
    min_success_rate: float
    compatibility_checks: Tuple[str, ...]


def _build_requirements() -> Dict[LaunchStage, StageRequirements]:
    table = {
        LaunchStage.OFF: StageRequirements(0.0, (), math.inf, 0.0, ()),
    }
    # (stage, coverage, added endpoint, max response ms, min success, added checks)
    rows = [
        (LaunchStage.DEV, 0.70, "health", 5000, 0.90, ("runtime_version", "dependencies")),
        (LaunchStage.BETA, 0.85, "metrics", 2000, 0.95, ("database_migration",)),
        (LaunchStage.GRADUAL, 0.90, "rollback", 1500, 0.98, ("cdn_cache",)),
        (LaunchStage.FULL, 0.95, "monitoring", 1000, 0.99, ("load_balancer",)),
    ]
    endpoints: Tuple[str, ...] = ()
    checks: Tuple[str, ...] = ()
    for stage, coverage, endpoint, max_ms, min_success, added_checks in rows:
        endpoints = endpoints + (endpoint,)
        checks = checks + added_checks
        table[stage] = StageRequirements(coverage, endpoints, max_ms, min_success, checks)
    return table


STAGE_REQUIREMENTS: Dict[LaunchStage, StageRequirements] = _build_requirements()


@dataclass
class ValidationContext:
    """Inputs for a single validation call."""

    feature_key: str
    target_stage: LaunchStage
    current_metrics: Optional[Sequence[LaunchMetrics]] = None
    environment_checks: Optional[Mapping[str, Optional[bool]]] = None
    test_results: Optional[TestResults] = None


@dataclass
class ValidationResult:
    """Outcome of a validation. Branch on `passed`; this is not an exception."""

    passed: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.passed = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "passed": self.passed,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
        }


class LaunchValidator:
    """Evaluates launch readiness for a target stage."""

    def __init__(
        self,
        registry: StageRegistry,
        hooks: Optional[RollbackHookRegistry] = None,
        requirements: Optional[Mapping[LaunchStage, StageRequirements]] = None,
    ):
        self.registry = registry
        self.hooks = hooks
        self.requirements = dict(requirements or STAGE_REQUIREMENTS)

    def validate(self, context: ValidationContext) -> ValidationResult:
        result = ValidationResult()

        if not self.registry.is_registered(context.feature_key):
            result.add_error(f"Feature '{context.feature_key}' not found in launch registry")
            return result

        criteria = self.requirements[context.target_stage]
        self._validate_test_coverage(context, criteria, result)
        self._validate_performance(context, criteria, result)
        self._validate_endpoints(context, criteria, result)
        self._validate_compatibility(context, criteria, result)
        self._validate_metrics(context, result)
        self._validate_rollback_plan(context, result)

        if not result.passed:
            logger.warning(
                f"Validation failed for {context.feature_key} -> {context.target_stage.value}: "
                f"{'; '.join(result.errors)}"
            )
        return result

    def _validate_test_coverage(
        self,
        context: ValidationContext,
        criteria: StageRequirements,
        result: ValidationResult,
    ) -> None:
        tests = context.test_results
        if tests is None:
            result.warnings.append("Test results not provided - skipping coverage validation")
            return

        if tests.coverage < criteria.min_coverage:
            result.add_error(
                f"Test coverage {tests.coverage * 100:.1f}% below required "
                f"{criteria.min_coverage * 100:.1f}%"
            )

        if tests.total_failed > 0:
            result.add_error(
                f"{tests.total_failed} tests are failing - all tests must pass before launch"
            )

        if tests.coverage < 0.9 and context.target_stage == LaunchStage.FULL:
            result.recommendations.append(
                "Consider increasing test coverage to 90%+ for production deployment"
            )

        if tests.e2e_tests.passed == 0 and context.target_stage in (
            LaunchStage.GRADUAL,
            LaunchStage.FULL,
        ):
            result.warnings.append(
                "No E2E tests detected - consider adding end-to-end test coverage"
            )

    def _validate_performance(
        self,
        context: ValidationContext,
        criteria: StageRequirements,
        result: ValidationResult,
    ) -> None:
        performance = context.test_results.performance_tests if context.test_results else None
        if performance is None:
            result.warnings.append("Performance test results not provided")
            return

        if performance.response_time_ms > criteria.max_response_time_ms:
            result.add_error(
                f"Response time {performance.response_time_ms:g}ms exceeds maximum "
                f"{criteria.max_response_time_ms:g}ms"
            )

        if performance.success_rate < criteria.min_success_rate:
            result.add_error(
                f"Success rate {performance.success_rate * 100:.1f}% below minimum "
                f"{criteria.min_success_rate * 100:.1f}%"
            )

        if performance.response_time_ms > criteria.max_response_time_ms * 0.8:
            result.recommendations.append(
                "Response time is approaching limits - consider optimization"
            )

    def _validate_endpoints(
        self,
        context: ValidationContext,
        criteria: StageRequirements,
        result: ValidationResult,
    ) -> None:
        checks = context.environment_checks or {}
        for endpoint in criteria.required_endpoints:
            available = checks.get(endpoint_check_key(endpoint))
            if available is None:
                result.warnings.append(f"Could not verify required endpoint '{endpoint}'")
            elif not available:
                result.add_error(f"Required endpoint '{endpoint}' not available or failing")

    def _validate_compatibility(
        self,
        context: ValidationContext,
        criteria: StageRequirements,
        result: ValidationResult,
    ) -> None:
        checks = context.environment_checks or {}
        for check in criteria.compatibility_checks:
            compatible = checks.get(check)
            if compatible is None:
                result.warnings.append(f"Could not verify compatibility for: {check}")
            elif not compatible:
                result.add_error(f"Compatibility check failed: {check}")

    def _validate_metrics(self, context: ValidationContext, result: ValidationResult) -> None:
        if not context.current_metrics:
            result.recommendations.append(
                "No recent metrics available - consider collecting baseline metrics"
            )
            return

        recent = list(context.current_metrics)[-10:]
        avg_success_rate = sum(m.success_rate for m in recent) / len(recent)
        avg_error_count = sum(m.error_count for m in recent) / len(recent)

        if avg_success_rate < 0.95:
            result.warnings.append(
                f"Recent success rate {avg_success_rate * 100:.1f}% is below recommended 95%"
            )
        if avg_error_count > 5:
            result.warnings.append(f"Average error count {avg_error_count:.1f} is elevated")

    def _validate_rollback_plan(self, context: ValidationContext, result: ValidationResult) -> None:
        config = self.registry.get_config(context.feature_key)
        plan = config.rollback_plan.strip()
        if not plan:
            result.warnings.append("No rollback plan documented for this feature")
        elif len(plan) < 20:
            result.recommendations.append("Consider providing more detailed rollback procedures")

        check = self.hooks.get_sanity_check(context.feature_key) if self.hooks else None
        if check is None:
            result.recommendations.append("Consider adding feature-specific rollback validation")
            return

        try:
            ready = check(context.feature_key)
        except Exception as e:
            result.warnings.append(
                f"Could not verify rollback readiness for '{context.feature_key}': {e}"
            )
            return
        if not ready:
            result.add_error(
                f"Rollback sanity check failed for '{context.feature_key}' - "
                "fallback path is not properly configured"
            )


def generate_validation_report(result: ValidationResult, context: ValidationContext) -> str:
    """Render a validation result as a markdown report."""
    lines = [
        "# Launch Validation Report",
        "",
        f"**Feature:** {context.feature_key}",
        f"**Target Stage:** {context.target_stage.value}",
        f"**Status:** {'✅ PASSED' if result.passed else '❌ FAILED'}",
        "",
    ]

    sections = (
        ("❌ Errors", result.errors),
        ("⚠️ Warnings", result.warnings),
        ("💡 Recommendations", result.recommendations),
    )
    for title, items in sections:
        if not items:
            continue
        lines.append(f"## {title} ({len(items)})")
        lines.append("")
        lines.extend(f"- {item}" for item in items)
        lines.append("")

    return "\n".join(lines) + "\n"
