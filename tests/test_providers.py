import io

import pytest

from devtree.busses import bus_checks
from devtree.checkbase import CheckContext, CheckStatus
from devtree.data import Data, MarkerType
from devtree.providers import (
    node_is_interrupt_provider,
    prop_is_gpio,
    provider_checks,
)
from devtree.structural import structural_checks
from devtree.tree import DTSF_PLUGIN, DTInfo, Node, Property


def cells(*values):
    data = Data()
    for value in values:
        data.append_cell(value)
    return data


def prop(name, val=None):
    return Property(name, val if val is not None else Data())


def make_tree(root, dtsflags=0):
    root.fill_fullpaths("")
    return DTInfo(root, dtsflags=dtsflags)


def run_check(dti, name):
    checks = structural_checks() + bus_checks() + provider_checks()
    ctx = CheckContext(dti, {c.name: c for c in checks}, stream=io.StringIO())
    target = ctx.checks[name]
    target.warn = True
    target.run(ctx)
    return target, [m for m in ctx.messages if f"({name})" in m]


def clock_tree(consumer_val, provider_props=None):
    provider = Node(
        "clk",
        properties=[prop("phandle", cells(1))] + (provider_props or []),
    )
    consumer = Node("dev", properties=[prop("clocks", consumer_val)])
    return make_tree(Node("", children=[provider, consumer]))


@pytest.mark.parametrize(
    "name, expected",
    [
        ("gpios", True),
        ("reset-gpios", True),
        ("enable-gpio", True),
        ("nr-gpios", False),
        ("gpio-controller", False),
        ("ngpios", False),
    ],
)
def test_prop_is_gpio(name, expected):
    assert prop_is_gpio(prop(name)) is expected


def test_node_is_interrupt_provider():
    assert node_is_interrupt_provider(Node("a", [prop("interrupt-controller")]))
    assert node_is_interrupt_provider(Node("b", [prop("interrupt-map")]))
    assert not node_is_interrupt_provider(Node("c", [prop("interrupts")]))


def test_provider_check_names_are_unique():
    names = [c.name for c in provider_checks()]
    assert len(names) == len(set(names))
    assert "clocks_property" in names
    assert "graph_endpoint" in names


def test_clocks_valid():
    dti = clock_tree(cells(1, 5), [prop("#clock-cells", cells(1))])
    check, messages = run_check(dti, "clocks_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_clocks_missing_cells_property():
    dti = clock_tree(cells(1, 5))
    check, messages = run_check(dti, "clocks_property")
    assert check.status is CheckStatus.FAILED
    assert any("Missing property '#clock-cells'" in m for m in messages)


def test_clocks_unknown_phandle():
    dti = clock_tree(cells(7), [prop("#clock-cells", cells(0))])
    check, messages = run_check(dti, "clocks_property")
    assert check.status is CheckStatus.FAILED
    assert any("Could not get phandle node for (cell 0)" in m for m in messages)


def test_clocks_size_not_cell_multiple():
    dti = clock_tree(Data(b"\0\0\0\1\5"), [prop("#clock-cells", cells(0))])
    _, messages = run_check(dti, "clocks_property")
    assert any("property size (5) is invalid" in m for m in messages)


def test_clocks_too_small_for_cell_size():
    dti = clock_tree(cells(1), [prop("#clock-cells", cells(2))])
    _, messages = run_check(dti, "clocks_property")
    assert any("too small for cell size 2" in m for m in messages)


def test_clocks_null_phandle_is_skipped():
    dti = clock_tree(cells(0, 1, 3), [prop("#clock-cells", cells(1))])
    check, messages = run_check(dti, "clocks_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_clocks_marker_not_phandle_reference():
    value = Data().add_marker(MarkerType.UINT32).append_cell(1).append_cell(5)
    dti = clock_tree(value, [prop("#clock-cells", cells(1))])
    _, messages = run_check(dti, "clocks_property")
    assert any("cell 0 is not a phandle reference" in m for m in messages)


def test_msi_parent_cells_are_optional():
    provider = Node("msi", properties=[prop("phandle", cells(1))])
    consumer = Node("dev", properties=[prop("msi-parent", cells(1))])
    dti = make_tree(Node("", children=[provider, consumer]))
    check, messages = run_check(dti, "msi_parent_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_gpios_valid_and_hog_skipped():
    ctrl = Node("gpio", properties=[
        prop("phandle", cells(1)), prop("#gpio-cells", cells(2)),
    ])
    dev = Node("dev", properties=[prop("reset-gpios", cells(1, 2, 0))])
    hog = Node("hog", properties=[prop("gpio-hog"), prop("gpios", cells(9))])
    dti = make_tree(Node("", children=[ctrl, dev, hog]))
    check, messages = run_check(dti, "gpios_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_gpios_missing_cells():
    ctrl = Node("gpio", properties=[prop("phandle", cells(1))])
    dev = Node("dev", properties=[prop("reset-gpios", cells(1, 2, 0))])
    dti = make_tree(Node("", children=[ctrl, dev]))
    _, messages = run_check(dti, "gpios_property")
    assert any("Missing property '#gpio-cells'" in m for m in messages)


def test_deprecated_gpio_property():
    dev = Node("dev", properties=[
        prop("reset-gpio", cells(1)), prop("enable-gpios", cells(1)),
    ])
    dti = make_tree(Node("", children=[dev]))
    check, messages = run_check(dti, "deprecated_gpio_property")
    assert check.status is CheckStatus.FAILED
    assert len(messages) == 1
    assert "/dev:reset-gpio:" in messages[0]
    assert "'[*-]gpio' is deprecated, use '[*-]gpios' instead" in messages[0]


def interrupt_tree(interrupts, parent_phandle=1, dtsflags=0):
    intc = Node("intc", properties=[
        prop("interrupt-controller"), prop("#interrupt-cells", cells(2)),
    ], phandle=1)
    dev = Node("dev", properties=[
        prop("interrupt-parent", cells(parent_phandle)),
        prop("interrupts", interrupts),
    ])
    return make_tree(Node("", children=[intc, dev]), dtsflags)


def test_interrupts_valid():
    check, messages = run_check(interrupt_tree(cells(1, 2)), "interrupts_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_interrupts_wrong_size():
    _, messages = run_check(interrupt_tree(cells(1, 2, 3)), "interrupts_property")
    assert any("size is (12), expected multiple of 8" in m for m in messages)


def test_interrupts_bad_phandle():
    _, messages = run_check(
        interrupt_tree(cells(1, 2), parent_phandle=5), "interrupts_property"
    )
    assert any("Bad phandle" in m for m in messages)


def test_interrupts_plugin_external_reference():
    dti = interrupt_tree(cells(1, 2), parent_phandle=0xFFFFFFFF,
                         dtsflags=DTSF_PLUGIN)
    check, messages = run_check(dti, "interrupts_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_interrupts_missing_parent():
    dev = Node("dev", properties=[prop("interrupts", cells(1))])
    dti = make_tree(Node("", children=[dev]))
    _, messages = run_check(dti, "interrupts_property")
    assert any("Missing interrupt-parent" in m for m in messages)


def test_interrupts_from_ancestor_controller():
    dev = Node("dev", properties=[prop("interrupts", cells(4))])
    intc = Node("intc", properties=[
        prop("interrupt-controller"), prop("#interrupt-cells", cells(1)),
    ], children=[dev])
    dti = make_tree(Node("", children=[intc]))
    check, messages = run_check(dti, "interrupts_property")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def graph_tree(a_remote, b_remote):
    ep_a = Node("endpoint", phandle=1,
                properties=[prop("remote-endpoint", cells(a_remote))]
                if a_remote else [])
    ep_b = Node("endpoint", phandle=2,
                properties=[prop("remote-endpoint", cells(b_remote))]
                if b_remote else [])
    dev_a = Node("dev-a", children=[Node("port", children=[ep_a])])
    dev_b = Node("dev-b", children=[Node("port", children=[ep_b])])
    return make_tree(Node("", children=[dev_a, dev_b]))


def test_graph_endpoint_bidirectional():
    check, messages = run_check(graph_tree(2, 1), "graph_endpoint")
    assert check.status is CheckStatus.PASSED
    assert messages == []


def test_graph_endpoint_one_way():
    check, messages = run_check(graph_tree(2, 0), "graph_endpoint")
    assert check.status is CheckStatus.FAILED
    assert any(
        "graph connection to node '/dev-b/port/endpoint' is not bidirectional"
        in m for m in messages
    )


def test_graph_port_bad_name():
    ep = Node("endpoint", properties=[prop("remote-endpoint", cells(0))])
    dev = Node("dev", children=[Node("link", children=[ep])])
    dti = make_tree(Node("", children=[dev]))
    _, messages = run_check(dti, "graph_port")
    assert any("graph port node name should be 'port'" in m for m in messages)


def test_graph_endpoint_reg_mismatch():
    good = Node("endpoint@1", properties=[prop("reg", cells(1))])
    bad = Node("endpoint@2", properties=[prop("reg", cells(1))])
    port = Node("port", children=[good, bad], addr_cells=1, size_cells=0)
    dti = make_tree(Node("", children=[Node("dev", children=[port])]))
    _, messages = run_check(dti, "graph_endpoint")
    assert len(messages) == 1
    assert "/dev/port/endpoint@2" in messages[0]
    assert 'expected "1"' in messages[0]


def test_graph_child_address_single_child():
    ep = Node("endpoint")
    port = Node("port@0", properties=[prop("reg", cells(0))], children=[ep])
    ports = Node("ports", children=[port], addr_cells=1, size_cells=0)
    dti = make_tree(Node("", children=[Node("dev", children=[ports])]))
    check, messages = run_check(dti, "graph_child_address")
    assert check.status is CheckStatus.FAILED
    assert any("graph node has single child node 'port@0'" in m for m in messages)