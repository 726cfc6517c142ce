import pytest

from devtree.data import Data, MarkerType
from devtree.tree import (
    PHANDLE_BOTH,
    PHANDLE_LEGACY,
    DTInfo,
    Node,
    Property,
    ReserveEntry,
)

TEST_VALUE_1 = 0xDEADBEEF
TEST_VALUE_2 = 123456789


def cell_prop(name, value, labels=None):
    return Property(name, Data().append_cell(value), labels=labels or [])


def string_prop(name, text):
    return Property(name, Data().append(text.encode() + b"\0"))


@pytest.fixture
def dti():
    subsub1 = Node("subsubnode", [cell_prop("prop-int", TEST_VALUE_1)])
    ss1 = Node("ss1")
    sub1 = Node(
        "subnode@1",
        [cell_prop("prop-int", TEST_VALUE_1, ["plabel"])],
        [subsub1, ss1],
        labels=["s1"],
    )
    subsub2 = Node("subsubnode@0", [cell_prop("prop-int", TEST_VALUE_2)], phandle=0x2000)
    sub2 = Node(
        "subnode@2",
        [cell_prop("prop-int", TEST_VALUE_2)],
        [subsub2, Node("ss2")],
        phandle=1,
    )
    marked = Data().append_cell(1).add_marker(MarkerType.LABEL, "mlabel").append_cell(2)
    root = Node(
        "",
        [
            string_prop("compatible", "test_tree1"),
            cell_prop("prop-int", TEST_VALUE_1),
            Property("marked", marked),
        ],
        [sub1, sub2],
    )
    info = DTInfo(root, reservelist=[ReserveEntry(0xDEADBEEF00000000, 0x100000)])
    root.fill_fullpaths("")
    return info


@pytest.mark.parametrize(
    "path",
    ["/subnode@1", "/subnode@2", "/subnode@1/subsubnode", "/subnode@2/subsubnode@0"],
)
def test_fullpaths(dti, path):
    node = dti.get_node_by_path(path)
    assert node.fullpath == path


def test_root_fullpath(dti):
    assert dti.dt.fullpath == "/"


def test_path_lookup_not_found(dti):
    assert dti.get_node_by_path("/nonexistant-subnode") is None
    assert dti.dt.get_subnode("nonexistant-subnode") is None
    assert dti.dt.get_subnode("subsubnode") is None


def test_path_lookup_requires_exact_name(dti):
    assert dti.get_node_by_path("/subnode") is None
    assert dti.get_node_by_path("") is dti.dt


def test_unitname_and_basename(dti):
    sub1 = dti.get_node_by_path("/subnode@1")
    assert sub1.unitname() == "1"
    assert sub1.basename == "subnode"
    assert sub1.basenamelen == len("subnode")
    assert dti.get_node_by_path("/subnode@1/subsubnode").unitname() == ""


def test_get_property_and_cell(dti):
    sub2 = dti.get_node_by_path("/subnode@2")
    assert sub2.get_property("prop-int").cell() == TEST_VALUE_2
    assert sub2.get_property("prop-str") is None


def test_cell_out_of_range():
    prop = cell_prop("x", 5)
    assert prop.cell(0) == 5
    with pytest.raises(IndexError):
        prop.cell(1)
    with pytest.raises(IndexError):
        prop.cell(-1)


def test_add_child_sets_parent():
    root = Node("")
    child = root.add_child(Node("leaf"))
    assert child.parent is root
    assert root.get_subnode("leaf") is child


def test_walk_preorder(dti):
    names = [n.name for n in dti.dt.walk()]
    assert names == [
        "", "subnode@1", "subsubnode", "ss1", "subnode@2", "subsubnode@0", "ss2",
    ]


def test_label_lookup(dti):
    assert dti.get_node_by_label("s1") is dti.get_node_by_path("/subnode@1")
    assert dti.get_node_by_label("missing") is None


def test_ref_lookup(dti):
    assert dti.get_node_by_ref("/") is dti.dt
    assert dti.get_node_by_ref("/subnode@2") is dti.get_node_by_path("/subnode@2")
    assert dti.get_node_by_ref("s1").name == "subnode@1"


def test_phandle_lookup(dti):
    assert dti.get_node_by_phandle(0x2000).name == "subsubnode@0"
    assert dti.get_node_by_phandle(1).name == "subnode@2"
    assert dti.get_node_by_phandle(0) is None
    assert dti.get_node_by_phandle(-1) is None


def test_property_label_lookup(dti):
    node, prop = dti.get_property_by_label("plabel")
    assert node.name == "subnode@1"
    assert prop.name == "prop-int"
    assert dti.get_property_by_label("nothing") is None


def test_marker_label_lookup(dti):
    node, prop, marker = dti.get_marker_label("mlabel")
    assert node is dti.dt
    assert prop.name == "marked"
    assert marker.offset == 4
    assert dti.get_marker_label("nothing") is None


def test_phandle_allocation_epapr(dti):
    node = dti.get_node_by_path("/subnode@1")
    h = dti.get_node_phandle(node)
    assert h not in (0, 1, 0x2000, 0xFFFFFFFF)
    assert dti.get_node_by_phandle(h) is node
    assert node.get_property("phandle").cell() == h
    assert node.get_property("linux,phandle") is None
    assert dti.get_node_phandle(node) == h


def test_phandle_allocation_unique(dti):
    a = dti.get_node_phandle(dti.get_node_by_path("/subnode@1"))
    b = dti.get_node_phandle(dti.get_node_by_path("/subnode@1/ss1"))
    assert a != b


def test_phandle_existing_kept(dti):
    node = dti.get_node_by_path("/subnode@2")
    assert dti.get_node_phandle(node) == 1
    assert node.get_property("phandle") is None


@pytest.mark.parametrize(
    "fmt,legacy,epapr", [(PHANDLE_LEGACY, True, False), (PHANDLE_BOTH, True, True)]
)
def test_phandle_formats(dti, fmt, legacy, epapr):
    dti.phandle_format = fmt
    node = dti.get_node_by_path("/subnode@1")
    h = dti.get_node_phandle(node)
    assert (node.get_property("linux,phandle") is not None) is legacy
    assert (node.get_property("phandle") is not None) is epapr
    if legacy:
        assert node.get_property("linux,phandle").cell() == h


def test_delete_node(dti):
    sub1 = dti.get_node_by_path("/subnode@1")
    sub1.delete()
    assert dti.get_node_by_path("/subnode@1") is None
    assert dti.get_node_by_label("s1") is None
    assert dti.get_property_by_label("plabel") is None
    assert list(sub1.live_properties()) == []
    assert [c.name for c in dti.dt.live_children()] == ["subnode@2"]
    assert all(c.deleted for c in sub1.children)


def test_deleted_property_hidden():
    node = Node("n", [cell_prop("a", 1), cell_prop("a", 2)])
    node.properties[0].deleted = True
    assert node.get_property("a").cell() == 2
    assert [p.cell() for p in node.live_properties()] == [2]


def test_reservelist(dti):
    entry = dti.reservelist[0]
    assert (entry.address, entry.size) == (0xDEADBEEF00000000, 0x100000)