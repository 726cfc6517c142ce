"""The live device tree: nodes, properties, reservations and lookups."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from devtree.data import Data, Marker, MarkerType

PHANDLE_LEGACY = 0x1
PHANDLE_EPAPR = 0x2
PHANDLE_BOTH = 0x3

DTSF_V1 = 0x0001
DTSF_PLUGIN = 0x0002

_CELL_SIZE = 4
_INVALID_PHANDLE = 0xFFFFFFFF


def _join_path(prefix: str, name: str) -> str:
    if prefix.endswith("/"):
        return prefix + name
    return f"{prefix}/{name}"


@dataclass(eq=False)
class Property:
    """A named property value with its labels."""

    name: str
    val: Data = field(default_factory=Data)
    labels: list[str] = field(default_factory=list)
    srcpos: Any = None
    deleted: bool = False

    def cell(self, index: int = 0) -> int:
        """Return the 32-bit cell at the given index."""
        start = index * _CELL_SIZE
        if index < 0 or start + _CELL_SIZE > len(self.val):
            raise IndexError(
                f"cell {index} out of range for property {self.name!r} "
                f"of {len(self.val)} bytes"
            )
        return int.from_bytes(self.val.val[start:start + _CELL_SIZE], "big")


@dataclass(eq=False)
class Node:
    """A tree node with properties and children."""

    name: str = ""
    properties: list[Property] = field(default_factory=list)
    children: list[Node] = field(default_factory=list)
    parent: Node | None = field(default=None, repr=False)
    fullpath: str = ""
    phandle: int = 0
    addr_cells: int = -1
    size_cells: int = -1
    labels: list[str] = field(default_factory=list)
    bus: Any = None
    srcpos: Any = None
    omit_if_unused: bool = False
    is_referenced: bool = False
    deleted: bool = False

    def __post_init__(self) -> None:
        for child in self.children:
            child.parent = self

    @property
    def basename(self) -> str:
        """The node name without its unit address."""
        return self.name.partition("@")[0]

    @property
    def basenamelen(self) -> int:
        return len(self.basename)

    def add_property(self, prop: Property) -> Property:
        """Append a property."""
        self.properties.append(prop)
        return prop

    def add_child(self, child: Node) -> Node:
        """Append a child node."""
        child.parent = self
        self.children.append(child)
        return child

    def get_property(self, name: str) -> Property | None:
        """Return the first live property of that name, or None."""
        return next((p for p in self.live_properties() if p.name == name), None)

    def get_subnode(self, name: str) -> Node | None:
        """Return the first live child of that exact name, or None."""
        return next((c for c in self.live_children() if c.name == name), None)

    def unitname(self) -> str:
        """The unit address after the first '@', or an empty string."""
        return self.name.partition("@")[2]

    def live_children(self) -> Iterator[Node]:
        """Yield the children that have not been deleted."""
        return (c for c in self.children if not c.deleted)

    def live_properties(self) -> Iterator[Property]:
        """Yield the properties that have not been deleted."""
        return (p for p in self.properties if not p.deleted)

    def walk(self) -> Iterator[Node]:
        """Yield this node and its live descendants in pre-order."""
        yield self
        for child in self.live_children():
            yield from child.walk()

    def delete(self) -> None:
        """Mark this node, its properties and its subtree as deleted."""
        self.deleted = True
        self.labels.clear()
        for prop in self.properties:
            prop.deleted = True
            prop.labels.clear()
        for child in self.children:
            child.delete()

    def fill_fullpaths(self, prefix: str = "") -> None:
        """Compute full paths for this node and its live descendants."""
        self.fullpath = _join_path(prefix, self.name)
        for child in self.live_children():
            child.fill_fullpaths(self.fullpath)


@dataclass
class ReserveEntry:
    """A memory reservation: start address and length."""

    address: int
    size: int
    labels: list[str] = field(default_factory=list)


def _lookup_path(node: Node, path: str) -> Node | None:
    if not path:
        return None if node.deleted else node
    path = path.lstrip("/")
    head, sep, rest = path.partition("/")
    for child in node.live_children():
        if child.name == head:
            return _lookup_path(child, rest) if sep else child
    return None


@dataclass
class DTInfo:
    """A whole device tree with its reservations and header information."""

    dt: Node
    dtsflags: int = 0
    reservelist: list[ReserveEntry] = field(default_factory=list)
    boot_cpuid_phys: int = 0
    outname: str = "-"
    phandle_format: int = PHANDLE_EPAPR
    _next_phandle: int = field(default=1, init=False, repr=False)

    def get_node_by_path(self, path: str) -> Node | None:
        """Find a node by its path of exact node names."""
        return _lookup_path(self.dt, path)

    def get_node_by_label(self, label: str) -> Node | None:
        """Find the first node carrying the label."""
        return next((n for n in self.dt.walk() if label in n.labels), None)

    def get_node_by_phandle(self, phandle: int) -> Node | None:
        """Find the node with the phandle; 0 and -1 never match."""
        phandle &= _INVALID_PHANDLE
        if phandle in (0, _INVALID_PHANDLE):
            return None
        return next((n for n in self.dt.walk() if n.phandle == phandle), None)

    def get_node_by_ref(self, ref: str) -> Node | None:
        """Resolve a reference given as a path or as a label."""
        if ref == "/":
            return self.dt
        if ref.startswith("/"):
            return self.get_node_by_path(ref)
        return self.get_node_by_label(ref)

    def get_node_phandle(self, node: Node) -> int:
        """Return the node's phandle, allocating one and its properties if needed."""
        if node.phandle not in (0, _INVALID_PHANDLE):
            return node.phandle
        while self.get_node_by_phandle(self._next_phandle) is not None:
            self._next_phandle += 1
        node.phandle = self._next_phandle

        def value() -> Data:
            return Data().add_marker(MarkerType.UINT32).append_cell(node.phandle)

        if (self.phandle_format & PHANDLE_LEGACY
                and node.get_property("linux,phandle") is None):
            node.add_property(Property("linux,phandle", value()))
        if (self.phandle_format & PHANDLE_EPAPR
                and node.get_property("phandle") is None):
            node.add_property(Property("phandle", value()))
        return node.phandle

    def get_property_by_label(self, label: str) -> tuple[Node, Property] | None:
        """Find the first property carrying the label, with its node."""
        for node in self.dt.walk():
            for prop in node.live_properties():
                if label in prop.labels:
                    return node, prop
        return None

    def get_marker_label(
        self, label: str
    ) -> tuple[Node, Property, Marker] | None:
        """Find a label placed inside a property value."""
        for node in self.dt.walk():
            for prop in node.live_properties():
                for marker in prop.val.markers_of_type(MarkerType.LABEL):
                    if marker.ref == label:
                        return node, prop, marker
        return None