"""Checks of phandle-plus-arguments properties, GPIOs, interrupts and graph bindings."""

from __future__ import annotations

from dataclasses import dataclass

from devtree.busses import BusType, _prefixeq
from devtree.checkbase import Check, CheckContext
from devtree.data import MarkerType
from devtree.tree import DTSF_PLUGIN, Node, Property

_CELL_SIZE = 4
_INVALID_PHANDLE = 0xFFFFFFFF

GRAPH_PORT_BUS = BusType("graph-port")
GRAPH_PORTS_BUS = BusType("graph-ports")


@dataclass(frozen=True)
class Provider:
    """A property that holds phandles to providers, each followed by arguments."""

    prop_name: str
    cell_name: str
    optional: bool = False


def _is_null_phandle(phandle: int) -> bool:
    return phandle in (0, _INVALID_PHANDLE)


def _check_property_phandle_args(
    check: Check,
    ctx: CheckContext,
    node: Node,
    prop: Property,
    provider: Provider,
) -> None:
    dti = ctx.dti
    length = len(prop.val)
    if length % _CELL_SIZE:
        check.fail(
            ctx, node,
            f"property size ({length}) is invalid, expected multiple of "
            f"{_CELL_SIZE}",
            prop,
        )
        return

    ncells = length // _CELL_SIZE
    cell = 0
    cellsize = 0
    while cell < ncells:
        phandle = prop.cell(cell)
        # Some bindings use 0 or -1 to skip over optional entries.
        if _is_null_phandle(phandle):
            if dti.dtsflags & DTSF_PLUGIN:
                break
            cellsize = 0
            cell += cellsize + 1
            continue

        if prop.val.markers:
            is_ref = any(
                m.offset == cell * _CELL_SIZE
                for m in prop.val.markers_of_type(MarkerType.REF_PHANDLE)
            )
            if not is_ref:
                check.fail(
                    ctx, node, f"cell {cell} is not a phandle reference", prop
                )

        provider_node = dti.get_node_by_phandle(phandle)
        if provider_node is None:
            check.fail(
                ctx, node, f"Could not get phandle node for (cell {cell})", prop
            )
            break

        cellprop = provider_node.get_property(provider.cell_name)
        if cellprop is not None:
            cellsize = cellprop.cell(0)
        elif provider.optional:
            cellsize = 0
        else:
            check.fail(
                ctx, node,
                f"Missing property '{provider.cell_name}' in node "
                f"{provider_node.fullpath} or bad phandle (referred from "
                f"{prop.name}[{cell}])",
            )
            break

        if length < (cell + cellsize + 1) * _CELL_SIZE:
            check.fail(
                ctx, node,
                f"property size ({length}) too small for cell size {cellsize}",
                prop,
            )
        cell += cellsize + 1


def _provider_cells_property(check: Check, ctx: CheckContext, node: Node) -> None:
    provider: Provider = check.data
    prop = node.get_property(provider.prop_name)
    if prop is None:
        return
    _check_property_phandle_args(check, ctx, node, prop, provider)


def prop_is_gpio(prop: Property) -> bool:
    """True if the property name is a GPIO specifier ('gpios', '*-gpio' and so on)."""
    # "nr-gpios" and similar are counts, not specifiers.
    if "nr-gpio" in prop.name:
        return False
    suffix = prop.name.rpartition("-")[2]
    return suffix in ("gpios", "gpio")


def _gpios_property(check: Check, ctx: CheckContext, node: Node) -> None:
    # GPIO hog nodes carry a 'gpios' property of their own form.
    if node.get_property("gpio-hog") is not None:
        return
    for prop in node.live_properties():
        if not prop_is_gpio(prop):
            continue
        provider = Provider(prop.name, "#gpio-cells", False)
        _check_property_phandle_args(check, ctx, node, prop, provider)


def _deprecated_gpio_property(check: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.live_properties():
        if not prop_is_gpio(prop):
            continue
        if prop.name[prop.name.find("gpio"):] != "gpio":
            continue
        check.fail(
            ctx, node, "'[*-]gpio' is deprecated, use '[*-]gpios' instead", prop
        )


def node_is_interrupt_provider(node: Node) -> bool:
    """True if the node is an interrupt controller or nexus."""
    return (node.get_property("interrupt-controller") is not None
            or node.get_property("interrupt-map") is not None)


def _interrupts_property(check: Check, ctx: CheckContext, node: Node) -> None:
    dti = ctx.dti
    irq_prop = node.get_property("interrupts")
    if irq_prop is None:
        return
    irq_len = len(irq_prop.val)
    if irq_len % _CELL_SIZE:
        check.fail(
            ctx, node,
            f"size ({irq_len}) is invalid, expected multiple of {_CELL_SIZE}",
            irq_prop,
        )

    irq_node: Node | None = None
    parent: Node | None = node
    while parent is not None:
        if parent is not node and node_is_interrupt_provider(parent):
            irq_node = parent
            break
        prop = parent.get_property("interrupt-parent")
        if prop is not None:
            phandle = prop.cell(0)
            # Give up on overlays with external references.
            if _is_null_phandle(phandle) and dti.dtsflags & DTSF_PLUGIN:
                return
            irq_node = dti.get_node_by_phandle(phandle)
            if irq_node is None:
                check.fail(ctx, parent, "Bad phandle", prop)
                return
            if not node_is_interrupt_provider(irq_node):
                check.fail(
                    ctx, irq_node,
                    "Missing interrupt-controller or interrupt-map property",
                )
            break
        parent = parent.parent

    if irq_node is None:
        check.fail(ctx, node, "Missing interrupt-parent")
        return

    prop = irq_node.get_property("#interrupt-cells")
    if prop is None:
        check.fail(ctx, irq_node, "Missing #interrupt-cells in interrupt-parent")
        return

    entrylen = prop.cell(0) * _CELL_SIZE
    if (entrylen == 0 and irq_len) or (entrylen and irq_len % entrylen):
        check.fail(
            ctx, node,
            f"size is ({irq_len}), expected multiple of {entrylen}",
            prop,
        )


def _graph_nodes(check: Check, ctx: CheckContext, node: Node) -> None:
    for child in node.live_children():
        if not (_prefixeq(child.name, child.basenamelen, "endpoint")
                or child.get_property("remote-endpoint") is not None):
            continue
        node.bus = GRAPH_PORT_BUS
        # The parent of a port is either a 'ports' node or a device.
        parent = node.parent
        if (parent is not None and parent.bus is None
                and (parent.name == "ports"
                     or node.get_property("reg") is not None)):
            parent.bus = GRAPH_PORTS_BUS
        break


def _graph_child_address(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.bus is not GRAPH_PORTS_BUS and node.bus is not GRAPH_PORT_BUS:
        return
    count = 0
    for child in node.live_children():
        prop = child.get_property("reg")
        # Any non-zero unit address makes the address cells necessary.
        if prop is not None and prop.cell(0) != 0:
            return
        count += 1
    if count == 1 and node.addr_cells != -1:
        check.fail(
            ctx, node,
            f"graph node has single child node '{node.children[0].name}', "
            "#address-cells/#size-cells are not necessary",
        )


def _check_graph_reg(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property("reg")
    if prop is None:
        return
    if len(prop.val) != _CELL_SIZE:
        check.fail(ctx, node, "graph node malformed 'reg' property")
        return
    unit_addr = f"{prop.cell(0):x}"
    if node.unitname() != unit_addr:
        check.fail(
            ctx, node, f'graph node unit address error, expected "{unit_addr}"'
        )
    parent = node.parent
    if parent is None:
        return
    if parent.addr_cells != 1:
        check.fail(
            ctx, node,
            f"graph node '#address-cells' is {parent.addr_cells}, must be 1",
            node.get_property("#address-cells"),
        )
    if parent.size_cells != 0:
        check.fail(
            ctx, node,
            f"graph node '#size-cells' is {parent.size_cells}, must be 0",
            node.get_property("#size-cells"),
        )


def _graph_port(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.bus is not GRAPH_PORT_BUS:
        return
    if not _prefixeq(node.name, node.basenamelen, "port"):
        check.fail(ctx, node, "graph port node name should be 'port'")
    _check_graph_reg(check, ctx, node)


def _get_remote_endpoint(
    check: Check, ctx: CheckContext, endpoint: Node
) -> Node | None:
    prop = endpoint.get_property("remote-endpoint")
    if prop is None:
        return None
    phandle = prop.cell(0)
    # Give up on overlays with external references.
    if _is_null_phandle(phandle):
        return None
    remote = ctx.dti.get_node_by_phandle(phandle)
    if remote is None:
        check.fail(ctx, endpoint, "graph phandle is not valid", prop)
    return remote


def _graph_endpoint(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.parent is None or node.parent.bus is not GRAPH_PORT_BUS:
        return
    if not _prefixeq(node.name, node.basenamelen, "endpoint"):
        check.fail(ctx, node, "graph endpoint node name should be 'endpoint'")
    _check_graph_reg(check, ctx, node)
    remote = _get_remote_endpoint(check, ctx, node)
    if remote is None:
        return
    if _get_remote_endpoint(check, ctx, remote) is not node:
        check.fail(
            ctx, node,
            f"graph connection to node '{remote.fullpath}' is not bidirectional",
        )


_PROVIDERS = (
    ("clocks", "clocks", "#clock-cells", False),
    ("cooling_device", "cooling-device", "#cooling-cells", False),
    ("dmas", "dmas", "#dma-cells", False),
    ("hwlocks", "hwlocks", "#hwlock-cells", False),
    ("interrupts_extended", "interrupts-extended", "#interrupt-cells", False),
    ("io_channels", "io-channels", "#io-channel-cells", False),
    ("iommus", "iommus", "#iommu-cells", False),
    ("mboxes", "mboxes", "#mbox-cells", False),
    ("msi_parent", "msi-parent", "#msi-cells", True),
    ("mux_controls", "mux-controls", "#mux-control-cells", False),
    ("phys", "phys", "#phy-cells", False),
    ("power_domains", "power-domains", "#power-domain-cells", False),
    ("pwms", "pwms", "#pwm-cells", False),
    ("resets", "resets", "#reset-cells", False),
    ("sound_dai", "sound-dai", "#sound-dai-cells", False),
    ("thermal_sensors", "thermal-sensors", "#thermal-sensor-cells", False),
)


def provider_checks() -> list[Check]:
    """Fresh instances of the provider, GPIO, interrupt and graph checks."""
    checks = [
        Check(f"{name}_property", _provider_cells_property,
              Provider(propname, cells, optional), warn=True,
              prereqs=("phandle_references",))
        for name, propname, cells, optional in _PROVIDERS
    ]
    checks += [
        Check("deprecated_gpio_property", _deprecated_gpio_property),
        Check("gpios_property", _gpios_property, warn=True,
              prereqs=("phandle_references",)),
        Check("interrupts_property", _interrupts_property, warn=True),
        Check("graph_nodes", _graph_nodes, warn=True),
        Check("graph_child_address", _graph_child_address, warn=True,
              prereqs=("graph_nodes",)),
        Check("graph_port", _graph_port, warn=True, prereqs=("graph_nodes",)),
        Check("graph_endpoint", _graph_endpoint, warn=True,
              prereqs=("graph_nodes",)),
    ]
    return checks