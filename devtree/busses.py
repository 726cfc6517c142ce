"""Address, bus and chosen-node checks: reg/ranges layout, PCI, simple-bus, I2C and SPI."""

from __future__ import annotations

import string
from dataclasses import dataclass

from devtree.checkbase import Check, CheckContext, _check_is_string
from devtree.tree import Node, Property

_CELL_SIZE = 4
_MASK64 = (1 << 64) - 1


@dataclass(frozen=True)
class BusType:
    """A kind of bus a node can be recognised as bridging."""

    name: str


PCI_BUS = BusType("PCI")
SIMPLE_BUS = BusType("simple-bus")
I2C_BUS = BusType("i2c-bus")
SPI_BUS = BusType("spi-bus")


def _c_string(value: bytes | bytearray) -> str:
    return bytes(value).split(b"\0", 1)[0].decode("latin-1")


def _prefixeq(text: str, length: int, word: str) -> bool:
    """True if the first length characters of text are exactly word."""
    return len(word) == length and text[:length] == word


def _cell_at(prop: Property, index: int) -> int:
    """The cell at index, or 0 where the value is too short to hold it."""
    start = index * _CELL_SIZE
    chunk = prop.val.val[start:start + _CELL_SIZE]
    if len(chunk) < _CELL_SIZE:
        return 0
    return int.from_bytes(chunk, "big")


def _has_children(node: Node) -> bool:
    return bool(node.children)


def node_is_compatible(node: Node, compat: str) -> bool:
    """True if the node's compatible list contains compat."""
    prop = node.get_property("compatible")
    if prop is None:
        return False
    value = bytes(prop.val.val)
    if not value:
        return False
    pieces = value.split(b"\0")
    if value.endswith(b"\0"):
        pieces.pop()
    return compat.encode("latin-1") in pieces


def node_is_disabled(node: Node) -> bool:
    """True if the node's status is "disabled"."""
    prop = node.get_property("status")
    return prop is not None and _c_string(prop.val.val) == "disabled"


def node_addr_cells(node: Node) -> int:
    """The node's #address-cells, defaulting to 2."""
    return 2 if node.addr_cells == -1 else node.addr_cells


def node_size_cells(node: Node) -> int:
    """The node's #size-cells, defaulting to 1."""
    return 1 if node.size_cells == -1 else node.size_cells


def _reg_format(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if node.parent is None:
        check.fail(ctx, node, 'Root node has a "reg" property')
        return
    if len(prop.val) == 0:
        check.fail(ctx, node, "property is empty", prop)
    addr_cells = node_addr_cells(node.parent)
    size_cells = node_size_cells(node.parent)
    entrylen = (addr_cells + size_cells) * _CELL_SIZE
    if not entrylen or len(prop.val) % entrylen != 0:
        check.fail(
            ctx, node,
            f"property has invalid length ({len(prop.val)} bytes) "
            f"(#address-cells == {addr_cells}, #size-cells == {size_cells})",
            prop,
        )


def _ranges_format(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("ranges")
    if prop is None:
        return
    if node.parent is None:
        check.fail(ctx, node, 'Root node has a "ranges" property', prop)
        return
    p_addr_cells = node_addr_cells(node.parent)
    p_size_cells = node_size_cells(node.parent)
    c_addr_cells = node_addr_cells(node)
    c_size_cells = node_size_cells(node)
    entrylen = (p_addr_cells + c_addr_cells + c_size_cells) * _CELL_SIZE
    length = len(prop.val)
    if length == 0:
        if p_addr_cells != c_addr_cells:
            check.fail(
                ctx, node,
                'empty "ranges" property but its #address-cells '
                f"({c_addr_cells}) differs from {node.parent.fullpath} "
                f"({p_addr_cells})",
                prop,
            )
        if p_size_cells != c_size_cells:
            check.fail(
                ctx, node,
                'empty "ranges" property but its #size-cells '
                f"({c_size_cells}) differs from {node.parent.fullpath} "
                f"({p_size_cells})",
                prop,
            )
    elif not entrylen or length % entrylen != 0:
        check.fail(
            ctx, node,
            f'"ranges" property has invalid length ({length} bytes) '
            f"(parent #address-cells == {p_addr_cells}, child #address-cells == "
            f"{c_addr_cells}, #size-cells == {c_size_cells})",
            prop,
        )


def _pci_bridge(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("device_type")
    if prop is None or _c_string(prop.val.val) != "pci":
        return
    node.bus = PCI_BUS
    if not (_prefixeq(node.name, node.basenamelen, "pci")
            or _prefixeq(node.name, node.basenamelen, "pcie")):
        check.fail(ctx, node, 'node name is not "pci" or "pcie"')
    if node.get_property("ranges") is None:
        check.fail(ctx, node, "missing ranges for PCI bridge (or not a bridge)")
    if node_addr_cells(node) != 3:
        check.fail(ctx, node, "incorrect #address-cells for PCI bridge")
    if node_size_cells(node) != 2:
        check.fail(ctx, node, "incorrect #size-cells for PCI bridge")

    prop = node.get_property("bus-range")
    if prop is None:
        return
    if len(prop.val) != 2 * _CELL_SIZE:
        check.fail(ctx, node, "value must be 2 cells", prop)
        return
    first, second = prop.cell(0), prop.cell(1)
    if first > second:
        check.fail(ctx, node, "1st cell must be less than or equal to 2nd cell", prop)
    if second > 0xFF:
        check.fail(ctx, node, "maximum bus number must be less than 256", prop)


def _pci_device_bus_num(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return
    prop = node.get_property("reg")
    if prop is None:
        return
    bus_num = (_cell_at(prop, 0) & 0x00FF0000) >> 16

    prop = node.parent.get_property("bus-range")
    if prop is None:
        min_bus = max_bus = 0
    else:
        min_bus = _cell_at(prop, 0)
        max_bus = _cell_at(prop, 0)
    if bus_num < min_bus or bus_num > max_bus:
        check.fail(
            ctx, node,
            f"PCI bus number {bus_num} out of range, expected "
            f"({min_bus} - {max_bus})",
            prop,
        )


def _pci_device_reg(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not PCI_BUS:
        return
    unitname = node.unitname()
    prop = node.get_property("reg")
    if prop is None:
        check.fail(ctx, node, "missing PCI reg property")
        return
    if _cell_at(prop, 1) or _cell_at(prop, 2):
        check.fail(
            ctx, node, "PCI reg config space address cells 2 and 3 must be 0", prop
        )
    reg = _cell_at(prop, 0)
    dev = (reg & 0xF800) >> 11
    func = (reg & 0x700) >> 8
    if reg & 0xFF000000:
        check.fail(ctx, node, "PCI reg address is not configuration space", prop)
    if reg & 0x000000FF:
        check.fail(
            ctx, node, "PCI reg config space address register number must be 0",
            prop,
        )
    if func == 0 and unitname == f"{dev:x}":
        return
    unit_addr = f"{dev:x},{func:x}"
    if unitname == unit_addr:
        return
    check.fail(ctx, node, f'PCI unit address format error, expected "{unit_addr}"')


def _simple_bus_bridge(check: Check, ctx: CheckContext, node: Node) -> None:
    if node_is_compatible(node, "simple-bus"):
        node.bus = SIMPLE_BUS


def _simple_bus_reg(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SIMPLE_BUS:
        return
    unitname = node.unitname()
    first_cell: int | None = None
    prop = node.get_property("reg")
    if prop is not None:
        first_cell = 0
    else:
        prop = node.get_property("ranges")
        if prop is not None and len(prop.val):
            # skip over the child address
            first_cell = node_addr_cells(node)

    if first_cell is None or prop is None:
        if node.parent.parent is not None and node.bus is not SIMPLE_BUS:
            check.fail(ctx, node, "missing or empty reg/ranges property")
        return

    reg = 0
    for index in range(node_addr_cells(node.parent)):
        reg = ((reg << 32) | _cell_at(prop, first_cell + index)) & _MASK64
    unit_addr = f"{reg:x}"
    if unitname != unit_addr:
        check.fail(
            ctx, node,
            f'simple-bus unit address format error, expected "{unit_addr}"',
        )


def _i2c_bus_bridge(check: Check, ctx: CheckContext, node: Node) -> None:
    if (_prefixeq(node.name, node.basenamelen, "i2c-bus")
            or _prefixeq(node.name, node.basenamelen, "i2c-arb")):
        node.bus = I2C_BUS
    elif _prefixeq(node.name, node.basenamelen, "i2c"):
        for child in node.live_children():
            if _prefixeq(child.name, node.basenamelen, "i2c-bus"):
                return
        node.bus = I2C_BUS
    else:
        return

    if not _has_children(node):
        return
    if node_addr_cells(node) != 1:
        check.fail(ctx, node, "incorrect #address-cells for I2C bus")
    if node_size_cells(node) != 0:
        check.fail(ctx, node, "incorrect #size-cells for I2C bus")


def _i2c_bus_reg(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not I2C_BUS:
        return
    unitname = node.unitname()
    prop = node.get_property("reg")
    if prop is None or len(prop.val) == 0:
        check.fail(ctx, node, "missing or empty reg property")
        return
    reg = _cell_at(prop, 0)
    unit_addr = f"{reg:x}"
    if unitname != unit_addr:
        check.fail(
            ctx, node, f'I2C bus unit address format error, expected "{unit_addr}"'
        )
    for index in range(-(-len(prop.val) // _CELL_SIZE)):
        reg = _cell_at(prop, index)
        if reg > 0x3FF:
            check.fail(
                ctx, node,
                f'I2C address must be less than 10-bits, got "0x{reg:x}"',
                prop,
            )


def _spi_bus_bridge(check: Check, ctx: CheckContext, node: Node) -> None:
    spi_addr_cells = 1
    if _prefixeq(node.name, node.basenamelen, "spi"):
        node.bus = SPI_BUS
    else:
        # Try to detect SPI buses which don't have a proper node name
        if node_addr_cells(node) != 1 or node_size_cells(node) != 0:
            return
        if any(
            prop.name.startswith("spi-")
            for child in node.live_children()
            for prop in child.live_properties()
        ):
            node.bus = SPI_BUS
        if node.bus is SPI_BUS and node.get_property("reg") is not None:
            check.fail(ctx, node, "node name for SPI buses should be 'spi'")

    if node.bus is not SPI_BUS or not _has_children(node):
        return
    if node.get_property("spi-slave") is not None:
        spi_addr_cells = 0
    if node_addr_cells(node) != spi_addr_cells:
        check.fail(ctx, node, "incorrect #address-cells for SPI bus")
    if node_size_cells(node) != 0:
        check.fail(ctx, node, "incorrect #size-cells for SPI bus")


def _spi_bus_reg(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not SPI_BUS:
        return
    if node.parent.get_property("spi-slave") is not None:
        return
    unitname = node.unitname()
    prop = node.get_property("reg")
    if prop is None or len(prop.val) == 0:
        check.fail(ctx, node, "missing or empty reg property")
        return
    unit_addr = f"{_cell_at(prop, 0):x}"
    if unitname != unit_addr:
        check.fail(
            ctx, node, f'SPI bus unit address format error, expected "{unit_addr}"'
        )


def _unit_address_format(check: Check, ctx: CheckContext, node: Node) -> None:
    unitname = node.unitname()
    if node.parent is not None and node.parent.bus is not None:
        return
    if not unitname:
        return
    if unitname.startswith("0x"):
        check.fail(ctx, node, 'unit name should not have leading "0x"')
        unitname = unitname[2:]
    if (len(unitname) > 1 and unitname[0] == "0"
            and unitname[1] in string.hexdigits):
        check.fail(ctx, node, "unit name should not have leading 0s")


def _avoid_default_addr_size(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None:
        return
    if node.get_property("reg") is None and node.get_property("ranges") is None:
        return
    if node.parent.addr_cells == -1:
        check.fail(ctx, node, "Relying on default #address-cells value")
    if node.parent.size_cells == -1:
        check.fail(ctx, node, "Relying on default #size-cells value")


def _avoid_unnecessary_addr_size(
    check: Check, ctx: CheckContext, node: Node
) -> None:
    if node.parent is None or node.addr_cells < 0 or node.size_cells < 0:
        return
    if node.get_property("ranges") is not None or not _has_children(node):
        return
    has_reg = any(
        child.get_property("reg") is not None for child in node.live_children()
    )
    if not has_reg:
        check.fail(
            ctx, node,
            'unnecessary #address-cells/#size-cells without "ranges" or child '
            '"reg" property',
        )


def _unique_unit_address_common(
    check: Check, ctx: CheckContext, node: Node, disable_check: bool
) -> None:
    if node.addr_cells < 0 or node.size_cells < 0:
        return
    if not _has_children(node):
        return
    for childa in node.live_children():
        addr_a = childa.unitname()
        if not addr_a:
            continue
        if disable_check and node_is_disabled(childa):
            continue
        for childb in node.live_children():
            if childa is childb:
                break
            if disable_check and node_is_disabled(childb):
                continue
            if addr_a == childb.unitname():
                check.fail(
                    ctx, childb,
                    f"duplicate unit-address (also used in node {childa.fullpath})",
                )


def _unique_unit_address(check: Check, ctx: CheckContext, node: Node) -> None:
    _unique_unit_address_common(check, ctx, node, False)


def _unique_unit_address_if_enabled(
    check: Check, ctx: CheckContext, node: Node
) -> None:
    _unique_unit_address_common(check, ctx, node, True)


def _obsolete_chosen_interrupt_controller(
    check: Check, ctx: CheckContext, node: Node
) -> None:
    if node is not ctx.dti.dt:
        return
    chosen = ctx.dti.get_node_by_path("/chosen")
    if chosen is None:
        return
    prop = chosen.get_property("interrupt-controller")
    if prop is not None:
        check.fail(
            ctx, node, '/chosen has obsolete "interrupt-controller" property', prop
        )


def _chosen_node_is_root(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "chosen":
        return
    if node.parent is not ctx.dti.dt:
        check.fail(ctx, node, "chosen node must be at root node")


def _chosen_node_bootargs(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("bootargs")
    if prop is None:
        return
    check.data = prop.name
    _check_is_string(check, ctx, node)


def _chosen_node_stdout_path(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "chosen":
        return
    prop = node.get_property("stdout-path")
    if prop is None:
        prop = node.get_property("linux,stdout-path")
        if prop is None:
            return
        check.fail(ctx, node, "Use 'stdout-path' instead", prop)
    check.data = prop.name
    _check_is_string(check, ctx, node)


def bus_checks() -> list[Check]:
    """Fresh instances of the address, bus and chosen-node checks."""
    return [
        Check("reg_format", _reg_format, warn=True, prereqs=("addr_size_cells",)),
        Check("ranges_format", _ranges_format, warn=True,
              prereqs=("addr_size_cells",)),
        Check("unit_address_format", _unit_address_format, warn=True,
              prereqs=("node_name_format", "pci_bridge", "simple_bus_bridge")),
        Check("pci_bridge", _pci_bridge, warn=True,
              prereqs=("device_type_is_string", "addr_size_cells")),
        Check("pci_device_reg", _pci_device_reg, warn=True,
              prereqs=("reg_format", "pci_bridge")),
        Check("pci_device_bus_num", _pci_device_bus_num, warn=True,
              prereqs=("reg_format", "pci_bridge")),
        Check("simple_bus_bridge", _simple_bus_bridge, warn=True,
              prereqs=("addr_size_cells", "compatible_is_string_list")),
        Check("simple_bus_reg", _simple_bus_reg, warn=True,
              prereqs=("reg_format", "simple_bus_bridge")),
        Check("i2c_bus_bridge", _i2c_bus_bridge, warn=True,
              prereqs=("addr_size_cells",)),
        Check("i2c_bus_reg", _i2c_bus_reg, warn=True,
              prereqs=("reg_format", "i2c_bus_bridge")),
        Check("spi_bus_bridge", _spi_bus_bridge, warn=True,
              prereqs=("addr_size_cells",)),
        Check("spi_bus_reg", _spi_bus_reg, warn=True,
              prereqs=("reg_format", "spi_bus_bridge")),
        Check("avoid_default_addr_size", _avoid_default_addr_size, warn=True,
              prereqs=("addr_size_cells",)),
        Check("avoid_unnecessary_addr_size", _avoid_unnecessary_addr_size,
              warn=True, prereqs=("avoid_default_addr_size",)),
        Check("unique_unit_address", _unique_unit_address, warn=True,
              prereqs=("avoid_default_addr_size",)),
        Check("unique_unit_address_if_enabled", _unique_unit_address_if_enabled,
              prereqs=("avoid_default_addr_size",)),
        Check("obsolete_chosen_interrupt_controller",
              _obsolete_chosen_interrupt_controller, warn=True),
        Check("chosen_node_is_root", _chosen_node_is_root, warn=True),
        Check("chosen_node_bootargs", _chosen_node_bootargs, warn=True),
        Check("chosen_node_stdout_path", _chosen_node_stdout_path, warn=True),
    ]