# devtree

`devtree` is a Python model of device trees. You can build trees in memory
and look things up in them. It also runs a set of consistency checks on a
tree: naming, references, addressing and bus bindings. It needs nothing
outside the standard library.

## Modules

- `devtree.data`: `Data` holds the raw bytes of a property value together
  with an ordered list of `Marker`s. A `MarkerType` records a label, a
  phandle or path reference, or the point where integer or string data
  begins. Integers are stored big-endian.
- `devtree.tree`: `Property`, `Node`, `ReserveEntry` and `DTInfo`. Nodes are
  found by path, label, phandle or reference. `DTInfo.get_node_phandle`
  allocates a phandle when a node has none and adds `phandle` and/or
  `linux,phandle` properties, as `DTInfo.phandle_format` says.
- `devtree.checkbase`: the check machinery. `Check` runs its prerequisites
  first, then visits every live node. `CheckStatus` records the outcome, and
  `CheckContext` carries the tree, the quiet level and the diagnostics.
- `devtree.structural`, `devtree.busses`, `devtree.providers`: the checks
  themselves. `structural_checks()` covers duplicate names, bad characters,
  labels, explicit phandles, phandle and path reference fixups, and unused
  node removal. `bus_checks()` covers `reg`/`ranges` layout, PCI, simple-bus,
  I2C and SPI addressing, unit addresses and `/chosen`. `provider_checks()`
  covers `#*-cells` provider arguments, GPIOs, interrupts and graph
  ports/endpoints. Helpers such as `node_is_compatible`, `node_is_disabled`,
  `node_addr_cells`, `node_size_cells`, `prop_is_gpio` and
  `node_is_interrupt_provider` are public.
- `devtree.checks`: `CheckSuite`, which holds every check in a fixed order,
  together with `UnknownCheckError` and `InputTreeError`.
- `devtree.formats`: `guess_type_by_name`, `guess_input_format`,
  `is_power_of_2`, and `parse_phandle_format` with `PhandleFormat`.

## Property values

```python
from devtree.data import Data, MarkerType

reg = Data().add_marker(MarkerType.UINT32).append_cell(0x1000).append_cell(0x100)
assert bytes(reg) == b"\x00\x00\x10\x00\x00\x00\x01\x00"

name = Data().append(b"serial\0")
assert name.is_one_string()
```

The append methods change the value in place and return it, so calls can be
chained. `append_integer(value, bits)` accepts 8, 16, 32 or 64 bits, masks
the value to that width, and raises `ValueError` for any other width.
`append_align` pads with zero bytes up to the next multiple. `merge` appends
another value and shifts that value's markers by the current length.
`Data.from_file(stream, maxlen)` reads a binary stream, either to its end or
up to `maxlen` bytes.

## Running checks

```python
import io

from devtree.checkbase import CheckContext
from devtree.checks import CheckSuite
from devtree.tree import DTInfo, Node

root = Node("", children=[Node("uart@1000")])
root.fill_fullpaths()
ctx = CheckContext(DTInfo(root), stream=io.StringIO())

suite = CheckSuite()
had_errors = suite.run(ctx)
print(had_errors)      # False
print(ctx.messages)    # [... "Warning (unit_address_vs_reg): /uart@1000: node has a unit name, but no reg property\n"]
```

Call `fill_fullpaths()` on the root before you run the checks, because
diagnostics name nodes by their full path.

Every diagnostic is appended to `CheckContext.messages` and written to
`CheckContext.stream`, or to standard error if no stream is given. A
diagnostic starts with the node's source position if it has one. Otherwise it
starts with `DTInfo.outname`, and an `outname` of `"-"` is shown as
`<stdout>`. `quiet` works in levels: at 1 warnings are dropped, at 2 errors
are dropped as well, and at 3 the "output forced" notice is also dropped.

`suite.parse_option(warn, error, name)` raises a check to warning or error
level. Put `no-` or `no_` in front of the name to lower it instead. Raising a
check also raises its prerequisites. Lowering a check also lowers every check
that depends on it. An unknown name raises `UnknownCheckError`. Some checks
start switched off, for example `node_name_chars_strict`,
`property_name_chars_strict`, `deprecated_gpio_property`,
`unique_unit_address_if_enabled` and `always_fail`.

`CheckSuite.run(ctx, force=False)` returns `True` if an error-level check
failed. In that case it raises `InputTreeError`, unless `force` is set, in
which case it reports "output forced" and returns. Some checks change the
tree as they run. They resolve phandle and path references, allocate
phandles, remove redundant `name` properties and delete unreferenced nodes
that are marked `omit_if_unused`. Each `CheckSuite` keeps its own check
state, so use a fresh suite for each tree.

## Format helpers

```python
from devtree.formats import PhandleFormat, guess_type_by_name, is_power_of_2, parse_phandle_format

assert guess_type_by_name("board.DTB", None) == "dtb"
assert guess_type_by_name("notes.txt", "dts") == "dts"
assert is_power_of_2(64)
assert parse_phandle_format("both") is PhandleFormat.BOTH
```

`guess_input_format(path, fallback)` returns `"fs"` for a directory and
`"dtb"` for a file that begins with the blob magic `0xd00dfeed`. Otherwise it
guesses from the file extension, and if that fails it returns the fallback.
`parse_phandle_format` raises `ValueError` for any name other than `legacy`,
`epapr` or `both`.

## What it does not do

`devtree` has no parser for device tree source text. It cannot read or write
flattened blobs, assembler output, YAML or `/proc/device-tree` directories,
and it provides no command-line program. You build trees through the
`devtree.tree` classes. The format helpers only decide which format a file
is; they do not convert between formats.