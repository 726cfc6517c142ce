"""The full table of tree checks, with options to tune them and a runner."""

from __future__ import annotations

from devtree.busses import bus_checks
from devtree.checkbase import Check, CheckContext
from devtree.providers import provider_checks
from devtree.structural import structural_checks

# The order in which checks are run and searched.
_TABLE_ORDER = (
    "duplicate_node_names", "duplicate_property_names",
    "node_name_chars", "node_name_format", "property_name_chars",
    "name_is_string", "name_properties",
    "duplicate_label",
    "explicit_phandles",
    "phandle_references", "path_references",
    "omit_unused_nodes",
    "address_cells_is_cell", "size_cells_is_cell", "interrupt_cells_is_cell",
    "device_type_is_string", "model_is_string", "status_is_string",
    "label_is_string",
    "compatible_is_string_list", "names_is_string_list",
    "property_name_chars_strict",
    "node_name_chars_strict",
    "addr_size_cells", "reg_format", "ranges_format",
    "unit_address_vs_reg",
    "unit_address_format",
    "pci_bridge",
    "pci_device_reg",
    "pci_device_bus_num",
    "simple_bus_bridge",
    "simple_bus_reg",
    "i2c_bus_bridge",
    "i2c_bus_reg",
    "spi_bus_bridge",
    "spi_bus_reg",
    "avoid_default_addr_size",
    "avoid_unnecessary_addr_size",
    "unique_unit_address",
    "unique_unit_address_if_enabled",
    "obsolete_chosen_interrupt_controller",
    "chosen_node_is_root", "chosen_node_bootargs", "chosen_node_stdout_path",
    "clocks_property",
    "cooling_device_property",
    "dmas_property",
    "hwlocks_property",
    "interrupts_extended_property",
    "io_channels_property",
    "iommus_property",
    "mboxes_property",
    "msi_parent_property",
    "mux_controls_property",
    "phys_property",
    "power_domains_property",
    "pwms_property",
    "resets_property",
    "sound_dai_property",
    "thermal_sensors_property",
    "deprecated_gpio_property",
    "gpios_property",
    "interrupts_property",
    "alias_paths",
    "graph_nodes", "graph_child_address", "graph_port", "graph_endpoint",
    "always_fail",
)


class UnknownCheckError(LookupError):
    """Raised for a check name that is not in the table."""

    def __init__(self, name: str) -> None:
        super().__init__(f'Unrecognized check name "{name}"')
        self.name = name


class InputTreeError(Exception):
    """Raised when the tree has errors and output was not forced."""


class CheckSuite:
    """A fresh set of every check, in table order, with its own state."""

    def __init__(self) -> None:
        pool = {
            check.name: check
            for check in (*structural_checks(), *bus_checks(), *provider_checks())
        }
        self.checks: dict[str, Check] = {name: pool[name] for name in _TABLE_ORDER}

    def __iter__(self):
        return iter(self.checks.values())

    def get(self, name: str) -> Check:
        """The check with the given name."""
        try:
            return self.checks[name]
        except KeyError:
            raise UnknownCheckError(name) from None

    def _enable(self, check: Check, warn: bool, error: bool) -> None:
        # Raising a level raises it for the prerequisites too.
        if (warn and not check.warn) or (error and not check.error):
            for name in check.prereqs:
                self._enable(self.get(name), warn, error)
        check.warn = check.warn or warn
        check.error = check.error or error

    def _disable(self, check: Check, warn: bool, error: bool) -> None:
        # Lowering a level lowers it for the checks that depend on this one.
        if (warn and check.warn) or (error and check.error):
            for other in self.checks.values():
                if check.name in other.prereqs:
                    self._disable(other, warn, error)
        check.warn = check.warn and not warn
        check.error = check.error and not error

    def parse_option(self, warn: bool, error: bool, arg: str) -> None:
        """Enable a check by name, or disable it with a "no-" or "no_" prefix."""
        name = arg
        enable = True
        if arg.startswith(("no-", "no_")):
            name = arg[3:]
            enable = False
        check = self.get(name)
        if enable:
            self._enable(check, warn, error)
        else:
            self._disable(check, warn, error)

    def run(self, ctx: CheckContext, force: bool = False) -> bool:
        """Run every enabled check; True if an error was found.

        Raises InputTreeError on errors unless force is set.
        """
        ctx.checks = self.checks
        error = False
        for check in self.checks.values():
            if check.warn or check.error:
                # Once an error is seen the remaining checks are not run.
                error = error or check.run(ctx)
        if error:
            if not force:
                raise InputTreeError(
                    "Input tree has errors, aborting (use -f to force output)"
                )
            if ctx.quiet < 3:
                ctx.emit("Warning: Input tree has errors, output forced\n")
        return error