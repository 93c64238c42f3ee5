"""Run listener that turns runner events into a `RunReport`.

The report keeps one entry per test method and, for coarser reporting, one
`CompoundSummary` per class of the compound plan.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from instr_harness.planner.elements import TestPlanElement


class TestStatus(enum.Enum):
    __test__ = False

    INCOMPLETE = "incomplete"
    PASSED = "passed"
    FAILURE = "failure"
    ASSUMPTION_FAILURE = "assumption_failure"
    IGNORED = "ignored"


_FAILED_STATUSES = frozenset({TestStatus.FAILURE, TestStatus.INCOMPLETE})


@runtime_checkable
class RunListener(Protocol):
    def test_run_started(self, run_name: str, test_count: int) -> None: ...

    def test_started(self, test: str) -> None: ...

    def test_failed(self, test: str, trace: str) -> None: ...

    def test_assumption_failure(self, test: str, trace: str) -> None: ...

    def test_ignored(self, test: str) -> None: ...

    def test_ended(self, test: str) -> None: ...

    def test_run_failed(self, message: str) -> None: ...

    def test_run_ended(self, elapsed_ms: int) -> None: ...


@dataclass
class TestResult:
    __test__ = False

    test: str
    status: TestStatus = TestStatus.INCOMPLETE
    stack_trace: Optional[str] = None
    started_ms: Optional[int] = None
    ended_ms: Optional[int] = None


@dataclass(frozen=True)
class CompoundSummary:
    name: str
    total: int
    passed: int
    failed: int
    skipped: int

    @property
    def is_failed(self) -> bool:
        return self.failed > 0


@dataclass
class RunReport:
    run_name: str = ""
    device_name: Optional[str] = None
    results: Dict[str, TestResult] = field(default_factory=dict)
    run_failures: List[str] = field(default_factory=list)
    compound: List[CompoundSummary] = field(default_factory=list)
    elapsed_ms: int = 0

    def has_failed_tests(self) -> bool:
        return any(r.status in _FAILED_STATUSES for r in self.results.values())

    @property
    def is_run_failure(self) -> bool:
        return bool(self.run_failures)

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in TestStatus}
        for r in self.results.values():
            out[r.status.value] += 1
        return out


def _now_ms() -> int:
    return int(time.time() * 1000)


class TestRunResultCollector:
    """Default `RunListener`; aggregates events into a `RunReport`."""

    __test__ = False

    def __init__(
        self,
        *,
        device_name: Optional[str] = None,
        compound_plan: Sequence[TestPlanElement] = (),
    ) -> None:
        self._report = RunReport(device_name=device_name)
        self._compound_plan = list(compound_plan)

    def _result(self, test: str) -> TestResult:
        result = self._report.results.get(test)
        if result is None:
            result = TestResult(test=test)
            self._report.results[test] = result
        return result

    def test_run_started(self, run_name: str, test_count: int) -> None:  # noqa: ARG002
        self._report.run_name = run_name

    def test_started(self, test: str) -> None:
        result = self._result(test)
        result.status = TestStatus.INCOMPLETE
        result.started_ms = _now_ms()

    def test_failed(self, test: str, trace: str) -> None:
        result = self._result(test)
        result.status = TestStatus.FAILURE
        result.stack_trace = trace

    def test_assumption_failure(self, test: str, trace: str) -> None:
        result = self._result(test)
        result.status = TestStatus.ASSUMPTION_FAILURE
        result.stack_trace = trace

    def test_ignored(self, test: str) -> None:
        self._result(test).status = TestStatus.IGNORED

    def test_ended(self, test: str) -> None:
        result = self._result(test)
        if result.status is TestStatus.INCOMPLETE:
            result.status = TestStatus.PASSED
        result.ended_ms = _now_ms()

    def test_run_failed(self, message: str) -> None:
        self._report.run_failures.append(message)

    def test_run_ended(self, elapsed_ms: int) -> None:
        self._report.elapsed_ms = int(elapsed_ms)
        self._report.compound = [self._summarize(el) for el in self._compound_plan]

    def _summarize(self, element: TestPlanElement) -> CompoundSummary:
        methods = element.get_all_test_methods()
        passed = failed = skipped = 0
        for method in methods:
            result = self._report.results.get(method.name)
            status = result.status if result is not None else TestStatus.INCOMPLETE
            if status is TestStatus.PASSED:
                passed += 1
            elif status in _FAILED_STATUSES:
                failed += 1
            else:
                skipped += 1
        return CompoundSummary(
            name=element.name, total=len(methods), passed=passed, failed=failed, skipped=skipped
        )

    def run_result(self) -> RunReport:
        return self._report
