from __future__ import annotations

from typing import List, Optional, Sequence

from instr_harness.planner.elements import ElementKind, TestPlanElement


def _get_or_add(
    siblings: List[TestPlanElement],
    parent: Optional[TestPlanElement],
    name: str,
    kind: ElementKind,
) -> TestPlanElement:
    for node in siblings:
        if node.name == name and node.kind is kind:
            return node
    node = TestPlanElement(name, kind)
    if parent is None:
        siblings.append(node)
    else:
        parent.add_child(node)
    return node


class PackageTreeGenerator:
    """Groups flat method elements into package -> class -> method trees.

    Sibling order is first appearance in the input, so a flat walk of the
    result visits classes in the order they were discovered and methods of a
    class in discovery order. Every call builds fresh nodes.
    """

    def make_package_tree(self, plan_list: Sequence[TestPlanElement]) -> List[TestPlanElement]:
        roots: List[TestPlanElement] = []
        for element in plan_list:
            if element.kind is not ElementKind.METHOD:
                raise ValueError(f"plan list must contain methods only, got {element!r}")

            parent: Optional[TestPlanElement] = None
            siblings = roots
            package = element.package_name
            if package:
                parts = package.split(".")
                for i in range(len(parts)):
                    node = _get_or_add(siblings, parent, ".".join(parts[: i + 1]), ElementKind.PACKAGE)
                    parent, siblings = node, node.children

            class_node = _get_or_add(siblings, parent, element.class_name or "", ElementKind.CLASS)
            _get_or_add(class_node.children, class_node, element.name, ElementKind.METHOD)
        return roots
