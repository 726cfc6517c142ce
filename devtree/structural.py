"""Structural checks, reference fixups and basic property type checks."""

from __future__ import annotations

import string

from devtree.checkbase import (
    Check,
    CheckContext,
    _check_is_string_list,
    is_cell_check,
    is_string_check,
    is_string_list_check,
)
from devtree.data import Marker, MarkerType
from devtree.tree import DTSF_PLUGIN, Node, Property

LOWERCASE = string.ascii_lowercase
UPPERCASE = string.ascii_uppercase
DIGITS = string.digits
PROPNODECHARS = LOWERCASE + UPPERCASE + DIGITS + ",._+*#?-"
PROPNODECHARSSTRICT = LOWERCASE + UPPERCASE + DIGITS + ",-"

_CELL_SIZE = 4
_UNRESOLVED = 0xFFFFFFFF


def _span(text: str, allowed: str) -> int:
    """Length of the leading run of text made of allowed characters."""
    return next((i for i, ch in enumerate(text) if ch not in allowed), len(text))


def _c_string(value: bytes | bytearray) -> str:
    return bytes(value).split(b"\0", 1)[0].decode("latin-1")


def _always_fail(check: Check, ctx: CheckContext, node: Node) -> None:
    check.fail(ctx, node, "always_fail check")


def _duplicate_node_names(check: Check, ctx: CheckContext, node: Node) -> None:
    for index, child in enumerate(node.children):
        if child.deleted:
            continue
        for other in node.children[index + 1:]:
            if child.name == other.name:
                check.fail(ctx, other, "Duplicate node name")


def _duplicate_property_names(check: Check, ctx: CheckContext, node: Node) -> None:
    for index, prop in enumerate(node.properties):
        if prop.deleted:
            continue
        for other in node.properties[index + 1:]:
            if other.deleted:
                continue
            if prop.name == other.name:
                check.fail(ctx, node, "Duplicate property name", prop)


def _node_name_chars(check: Check, ctx: CheckContext, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < len(node.name):
        check.fail(ctx, node, f"Bad character '{node.name[n]}' in node name")


def _node_name_chars_strict(check: Check, ctx: CheckContext, node: Node) -> None:
    n = _span(node.name, check.data)
    if n < node.basenamelen:
        check.fail(
            ctx, node, f"Character '{node.name[n]}' not recommended in node name"
        )


def _node_name_format(check: Check, ctx: CheckContext, node: Node) -> None:
    if "@" in node.unitname():
        check.fail(ctx, node, "multiple '@' characters in node name")


def _unit_address_vs_reg(check: Check, ctx: CheckContext, node: Node) -> None:
    unitname = node.unitname()
    if node.get_subnode("__overlay__") is not None:
        return
    prop = node.get_property("reg")
    if prop is None:
        prop = node.get_property("ranges")
        if prop is not None and not len(prop.val):
            prop = None
    if prop is not None:
        if not unitname:
            check.fail(ctx, node, "node has a reg or ranges property, but no unit name")
    elif unitname:
        check.fail(ctx, node, "node has a unit name, but no reg property")


def _property_name_chars(check: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.live_properties():
        n = _span(prop.name, check.data)
        if n < len(prop.name):
            check.fail(
                ctx, node, f"Bad character '{prop.name[n]}' in property name", prop
            )


def _property_name_chars_strict(check: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.live_properties():
        name = prop.name
        n = _span(name, check.data)
        if n == len(name):
            continue
        if name == "device_type":
            continue
        # '#' is allowed only at the start of a name, after any vendor prefix
        if name[n] == "#" and (n == 0 or name[n - 1] == ","):
            name = name[n + 1:]
            n = _span(name, check.data)
        if n < len(name):
            check.fail(
                ctx, node, f"Character '{name[n]}' not recommended in property name",
                prop,
            )


def _describe_label(node: Node, prop: Property | None, mark: Marker | None) -> str:
    prefix = "value of " if mark is not None else ""
    where = f"'{prop.name}' in " if prop is not None else ""
    return f"{prefix}{where}{node.fullpath}"


def _check_duplicate_label(
    check: Check,
    ctx: CheckContext,
    label: str,
    node: Node,
    prop: Property | None,
    mark: Marker | None,
) -> None:
    dti = ctx.dti
    othernode = dti.get_node_by_label(label)
    otherprop = None
    othermark = None
    if othernode is None:
        found = dti.get_property_by_label(label)
        if found is not None:
            othernode, otherprop = found
    if othernode is None:
        found_mark = dti.get_marker_label(label)
        if found_mark is not None:
            othernode, otherprop, othermark = found_mark
    if othernode is None:
        return
    if othernode is not node or otherprop is not prop or othermark is not mark:
        check.fail(
            ctx, node,
            f"Duplicate label '{label}' on {_describe_label(node, prop, mark)}"
            f" and {_describe_label(othernode, otherprop, othermark)}",
        )


def _duplicate_label(check: Check, ctx: CheckContext, node: Node) -> None:
    for label in node.labels:
        _check_duplicate_label(check, ctx, label, node, None, None)
    for prop in node.live_properties():
        for label in prop.labels:
            _check_duplicate_label(check, ctx, label, node, prop, None)
        for mark in prop.val.markers_of_type(MarkerType.LABEL):
            _check_duplicate_label(check, ctx, mark.ref, node, prop, mark)


def _check_phandle_prop(
    check: Check, ctx: CheckContext, node: Node, propname: str
) -> int:
    prop = node.get_property(propname)
    if prop is None:
        return 0
    if len(prop.val) != _CELL_SIZE:
        check.fail(
            ctx, node, f"bad length ({len(prop.val)}) {prop.name} property", prop
        )
        return 0
    for mark in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
        if ctx.dti.get_node_by_ref(mark.ref) is not node:
            check.fail(ctx, node, f"{prop.name} is a reference to another node")
        # A reference to the node itself asks for a phandle to be allocated later.
        return 0
    phandle = prop.cell(0)
    if phandle in (0, _UNRESOLVED):
        check.fail(
            ctx, node, f"bad value (0x{phandle:x}) in {prop.name} property", prop
        )
        return 0
    return phandle


def _explicit_phandles(check: Check, ctx: CheckContext, node: Node) -> None:
    phandle = _check_phandle_prop(check, ctx, node, "phandle")
    linux_phandle = _check_phandle_prop(check, ctx, node, "linux,phandle")
    if not phandle and not linux_phandle:
        return
    if linux_phandle and phandle and phandle != linux_phandle:
        check.fail(ctx, node, "mismatching 'phandle' and 'linux,phandle' properties")
    if linux_phandle and not phandle:
        phandle = linux_phandle
    other = ctx.dti.get_node_by_phandle(phandle)
    if other is not None and other is not node:
        check.fail(
            ctx, node,
            f"duplicated phandle 0x{phandle:x} (seen before at {other.fullpath})",
        )
        return
    node.phandle = phandle


def _name_properties(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = next((p for p in node.properties if p.name == "name"), None)
    if prop is None:
        return
    base = node.basename.encode()
    value = bytes(prop.val.val)
    if len(value) != len(base) + 1 or value[:len(base)] != base:
        check.fail(
            ctx, node,
            f'"name" property is incorrect ("{_c_string(value)}" instead of base'
            " node name)",
        )
    else:
        # A correct name property is redundant.
        node.properties.remove(prop)


def _phandle_references(check: Check, ctx: CheckContext, node: Node) -> None:
    dti = ctx.dti
    for prop in node.live_properties():
        for mark in prop.val.markers_of_type(MarkerType.REF_PHANDLE):
            refnode = dti.get_node_by_ref(mark.ref)
            if refnode is None:
                if not dti.dtsflags & DTSF_PLUGIN:
                    check.fail(
                        ctx, node,
                        f'Reference to non-existent node or label "{mark.ref}"\n',
                    )
                else:
                    prop.val.val[mark.offset:mark.offset + _CELL_SIZE] = (
                        _UNRESOLVED.to_bytes(_CELL_SIZE, "big")
                    )
                continue
            phandle = dti.get_node_phandle(refnode)
            prop.val.val[mark.offset:mark.offset + _CELL_SIZE] = (
                phandle.to_bytes(_CELL_SIZE, "big")
            )
            refnode.is_referenced = True


def _path_references(check: Check, ctx: CheckContext, node: Node) -> None:
    dti = ctx.dti
    for prop in node.live_properties():
        for mark in prop.val.markers_of_type(MarkerType.REF_PATH):
            refnode = dti.get_node_by_ref(mark.ref)
            if refnode is None:
                check.fail(
                    ctx, node,
                    f'Reference to non-existent node or label "{mark.ref}"\n',
                )
                continue
            prop.val.insert_at_marker(mark, refnode.fullpath.encode() + b"\0")
            refnode.is_referenced = True


def _omit_unused_nodes(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.omit_if_unused and not node.is_referenced:
        node.delete()


def _names_is_string_list(check: Check, ctx: CheckContext, node: Node) -> None:
    for prop in node.live_properties():
        if not prop.name.endswith("-names"):
            continue
        check.data = prop.name
        _check_is_string_list(check, ctx, node)


def _alias_paths(check: Check, ctx: CheckContext, node: Node) -> None:
    if node.name != "aliases":
        return
    for prop in node.live_properties():
        path = _c_string(prop.val.val)
        if not prop.val.val or ctx.dti.get_node_by_path(path) is None:
            check.fail(
                ctx, node, f"aliases property is not a valid node ({path})", prop
            )
            continue
        if _span(prop.name, LOWERCASE + DIGITS + "-") != len(prop.name):
            check.fail(
                ctx, node, "aliases property name must include only lowercase and '-'"
            )


def _addr_size_cells(check: Check, ctx: CheckContext, node: Node) -> None:
    node.addr_cells = -1
    node.size_cells = -1
    prop = node.get_property("#address-cells")
    if prop is not None:
        node.addr_cells = prop.cell(0)
    prop = node.get_property("#size-cells")
    if prop is not None:
        node.size_cells = prop.cell(0)


def structural_checks() -> list[Check]:
    """Fresh instances of the structural, reference and type checks."""
    return [
        Check("duplicate_node_names", _duplicate_node_names, error=True),
        Check("duplicate_property_names", _duplicate_property_names, error=True),
        Check("node_name_chars", _node_name_chars, PROPNODECHARS + "@", error=True),
        Check("node_name_format", _node_name_format, error=True,
              prereqs=("node_name_chars",)),
        Check("property_name_chars", _property_name_chars, PROPNODECHARS,
              error=True),
        is_string_check("name_is_string", "name", error=True),
        Check("name_properties", _name_properties, error=True,
              prereqs=("name_is_string",)),
        Check("duplicate_label", _duplicate_label, error=True),
        Check("explicit_phandles", _explicit_phandles, error=True),
        Check("phandle_references", _phandle_references, error=True,
              prereqs=("duplicate_node_names", "explicit_phandles")),
        Check("path_references", _path_references, error=True,
              prereqs=("duplicate_node_names",)),
        Check("omit_unused_nodes", _omit_unused_nodes, error=True,
              prereqs=("phandle_references", "path_references")),
        is_cell_check("address_cells_is_cell", "#address-cells", warn=True),
        is_cell_check("size_cells_is_cell", "#size-cells", warn=True),
        is_cell_check("interrupt_cells_is_cell", "#interrupt-cells", warn=True),
        is_string_check("device_type_is_string", "device_type", warn=True),
        is_string_check("model_is_string", "model", warn=True),
        is_string_check("status_is_string", "status", warn=True),
        is_string_check("label_is_string", "label", warn=True),
        is_string_list_check("compatible_is_string_list", "compatible", warn=True),
        Check("names_is_string_list", _names_is_string_list, warn=True),
        Check("property_name_chars_strict", _property_name_chars_strict,
              PROPNODECHARSSTRICT),
        Check("node_name_chars_strict", _node_name_chars_strict,
              PROPNODECHARSSTRICT),
        Check("addr_size_cells", _addr_size_cells, warn=True,
              prereqs=("address_cells_is_cell", "size_cells_is_cell")),
        Check("unit_address_vs_reg", _unit_address_vs_reg, warn=True),
        Check("alias_paths", _alias_paths, warn=True),
        Check("always_fail", _always_fail),
    ]