"""Test plan tree: package -> class -> method."""

from __future__ import annotations

from instr_harness.planner.elements import (
    ElementKind,
    TestPlanElement,
    load_test_names,
    parse_test_names,
)
from instr_harness.planner.holder import InstrumentalTestHolder, TestPlan
from instr_harness.planner.package_tree import PackageTreeGenerator

__all__ = [
    "ElementKind",
    "InstrumentalTestHolder",
    "PackageTreeGenerator",
    "TestPlan",
    "TestPlanElement",
    "load_test_names",
    "parse_test_names",
]
