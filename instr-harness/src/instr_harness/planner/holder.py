from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from instr_harness.planner.elements import TestPlanElement
from instr_harness.planner.package_tree import PackageTreeGenerator


@dataclass(frozen=True)
class TestPlan:
    """Both views of one tree build: leaves to dispatch and class-level units to report.

    `roots` keeps the tree alive; children only hold weak links to parents.
    """

    __test__ = False

    roots: List[TestPlanElement]
    dispatch: Iterator[TestPlanElement]
    compound: List[TestPlanElement]


class InstrumentalTestHolder:
    """Holds the discovered test list and derives plans from it.

    `provide_test_plan()` returns the dispatch sequence and the compound plan
    from the same build and is what the runner uses.

    The older two-call form is kept: `provide_test_node_elements_iterator()`
    rebuilds the tree, and `provide_compound_test_plan()` reads the roots of
    the most recent rebuild. Without a prior rebuild the compound plan is an
    empty list.
    """

    __test__ = False

    def __init__(
        self,
        plan_list: Sequence[TestPlanElement],
        package_tree_generator: Optional[PackageTreeGenerator] = None,
    ) -> None:
        self._plan_list = list(plan_list)
        self._generator = package_tree_generator or PackageTreeGenerator()
        self._prev_roots: List[TestPlanElement] = []

    def _rebuild(self) -> List[TestPlanElement]:
        self._prev_roots = self._generator.make_package_tree(self._plan_list)
        return self._prev_roots

    def provide_test_node_elements_iterator(self) -> Iterator[TestPlanElement]:
        """Iterator over every test method, in discovery order."""
        return _flatten(self._rebuild())

    def provide_compound_test_plan(self) -> List[TestPlanElement]:
        return _compound(self._prev_roots)

    def provide_test_plan(self) -> TestPlan:
        roots = self._rebuild()
        return TestPlan(roots=roots, dispatch=_flatten(roots), compound=_compound(roots))


def _flatten(roots: Sequence[TestPlanElement]) -> Iterator[TestPlanElement]:
    flat: List[TestPlanElement] = []
    for root in roots:
        flat.extend(root.get_all_test_methods())
    return iter(flat)


def _compound(roots: Sequence[TestPlanElement]) -> List[TestPlanElement]:
    out: List[TestPlanElement] = []
    for root in roots:
        out.extend(root.get_compound_elements())
    return out
