from __future__ import annotations

import enum
import weakref
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

METHOD_SEPARATOR = "#"


class ElementKind(enum.Enum):
    PACKAGE = "package"
    CLASS = "class"
    METHOD = "method"


class TestPlanElement:
    """Node of the package/class/method tree.

    `name` is the fully qualified name: `a.b` for packages, `a.b.ClassX` for
    classes and `a.b.ClassX#m1` for methods. Children keep insertion order;
    the parent link is weak so dropping the roots frees the whole tree.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, name: str, kind: ElementKind) -> None:
        self.name = name
        self.kind = kind
        self.children: List[TestPlanElement] = []
        self._parent: Optional[weakref.ReferenceType[TestPlanElement]] = None

    @classmethod
    def from_test_name(cls, test_name: str) -> "TestPlanElement":
        test_name = test_name.strip()
        class_name, sep, method = test_name.partition(METHOD_SEPARATOR)
        if not sep or not class_name or not method:
            raise ValueError(f"expected <package>.<Class>#<method>, got: {test_name!r}")
        return cls(test_name, ElementKind.METHOD)

    @property
    def parent(self) -> Optional["TestPlanElement"]:
        return self._parent() if self._parent is not None else None

    def add_child(self, child: "TestPlanElement") -> "TestPlanElement":
        child._parent = weakref.ref(self)
        self.children.append(child)
        return child

    def find_child(self, name: str) -> Optional["TestPlanElement"]:
        for child in self.children:
            if child.name == name:
                return child
        return None

    @property
    def is_leaf(self) -> bool:
        return self.kind is ElementKind.METHOD

    @property
    def class_name(self) -> Optional[str]:
        if self.kind is ElementKind.METHOD:
            return self.name.partition(METHOD_SEPARATOR)[0]
        if self.kind is ElementKind.CLASS:
            return self.name
        return None

    @property
    def method_name(self) -> Optional[str]:
        if self.kind is not ElementKind.METHOD:
            return None
        return self.name.partition(METHOD_SEPARATOR)[2]

    @property
    def package_name(self) -> str:
        if self.kind is ElementKind.PACKAGE:
            return self.name
        class_name = self.class_name or ""
        return class_name.rpartition(".")[0]

    @property
    def simple_name(self) -> str:
        if self.kind is ElementKind.METHOD:
            return self.method_name or ""
        return self.name.rpartition(".")[2]

    def iter_nodes(self) -> Iterator["TestPlanElement"]:
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def get_all_test_methods(self) -> List["TestPlanElement"]:
        return [node for node in self.iter_nodes() if node.is_leaf]

    def get_compound_elements(self) -> List["TestPlanElement"]:
        """Class nodes at or below this node; each reports all its methods as one unit."""
        if self.kind is ElementKind.CLASS:
            return [self]
        out: List[TestPlanElement] = []
        for child in self.children:
            out.extend(child.get_compound_elements())
        return out

    def __repr__(self) -> str:
        return f"TestPlanElement({self.kind.value}:{self.name}, children={len(self.children)})"


def parse_test_names(lines: Iterable[str]) -> List[TestPlanElement]:
    out: List[TestPlanElement] = []
    for raw in lines:
        line = raw.split("//", 1)[0].strip()
        if not line:
            continue
        out.append(TestPlanElement.from_test_name(line))
    return out


def load_test_names(path: Path) -> List[TestPlanElement]:
    """Read one `<package>.<Class>#<method>` per line; blank lines and `//` comments are skipped."""
    return parse_test_names(path.read_text(encoding="utf-8").splitlines())
