"""The check machinery: statuses, contexts, prerequisite handling and reporting."""

from __future__ import annotations

import enum
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, TextIO

from devtree.tree import DTInfo, Node, Property


class CheckStatus(enum.Enum):
    """Outcome of running a check."""

    UNCHECKED = 0
    PREREQ = 1
    PASSED = 2
    FAILED = 3


@dataclass
class CheckContext:
    """Everything a check run needs: the tree, the known checks and the output."""

    dti: DTInfo
    checks: dict[str, "Check"] = field(default_factory=dict)
    quiet: int = 0
    stream: TextIO | None = None
    messages: list[str] = field(default_factory=list)

    def emit(self, text: str) -> None:
        """Record a diagnostic and write it to the stream (stderr by default)."""
        self.messages.append(text)
        out = self.stream if self.stream is not None else sys.stderr
        out.write(text)


CheckFn = Callable[["Check", CheckContext, Node], None]


@dataclass(eq=False)
class Check:
    """A named check applied to every node, with prerequisite checks by name."""

    name: str
    fn: CheckFn | None = None
    data: Any = None
    warn: bool = False
    error: bool = False
    prereqs: tuple[str, ...] = ()
    status: CheckStatus = CheckStatus.UNCHECKED
    inprogress: bool = False

    def _prerequisite(self, ctx: CheckContext, name: str) -> Check:
        try:
            return ctx.checks[name]
        except KeyError:
            raise LookupError(
                f"check {self.name!r} needs unknown check {name!r}"
            ) from None

    def _visit(self, ctx: CheckContext, node: Node) -> None:
        if self.fn is not None:
            self.fn(self, ctx, node)
        for child in node.live_children():
            self._visit(ctx, child)

    def run(self, ctx: CheckContext) -> bool:
        """Run the check after its prerequisites; True if an error was found."""
        if self.inprogress:
            raise RuntimeError(f"check {self.name!r} depends on itself")
        error = False
        if self.status is CheckStatus.UNCHECKED:
            self.inprogress = True
            try:
                for name in self.prereqs:
                    prq = self._prerequisite(ctx, name)
                    error = error or prq.run(ctx)
                    if prq.status is not CheckStatus.PASSED:
                        self.status = CheckStatus.PREREQ
                        self.message(
                            ctx, None, None, f"Failed prerequisite '{prq.name}'"
                        )
                if self.status is CheckStatus.UNCHECKED:
                    self._visit(ctx, ctx.dti.dt)
                    if self.status is CheckStatus.UNCHECKED:
                        self.status = CheckStatus.PASSED
            finally:
                self.inprogress = False
        if self.status is not CheckStatus.PASSED and self.error:
            error = True
        return error

    def fail(
        self,
        ctx: CheckContext,
        node: Node | None,
        message: str,
        prop: Property | None = None,
    ) -> None:
        """Mark the check failed and report the message."""
        self.status = CheckStatus.FAILED
        self.message(ctx, node, prop, message)

    def message(
        self,
        ctx: CheckContext,
        node: Node | None,
        prop: Property | None,
        message: str,
    ) -> None:
        """Report a message if the check is enabled at the current quiet level."""
        if not (self.warn and ctx.quiet < 1) and not (self.error and ctx.quiet < 2):
            return

        pos = None
        if prop is not None and prop.srcpos is not None:
            pos = prop.srcpos
        elif node is not None and node.srcpos is not None:
            pos = node.srcpos

        if pos is not None:
            head = str(pos)
        elif ctx.dti.outname == "-":
            head = "<stdout>"
        else:
            head = ctx.dti.outname

        level = "ERROR" if self.error else "Warning"
        parts = [f"{head}: {level} ({self.name}): "]
        if node is not None:
            if prop is not None:
                parts.append(f"{node.fullpath}:{prop.name}: ")
            else:
                parts.append(f"{node.fullpath}: ")
        parts.append(message)
        parts.append("\n")

        if prop is None and pos is not None and node is not None:
            extra = getattr(node.srcpos, "next", None)
            while extra is not None:
                parts.append(f"  also defined at {extra}\n")
                extra = getattr(extra, "next", None)

        ctx.emit("".join(parts))


def _check_is_string(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property(check.data)
    if prop is None:
        return
    if not prop.val.is_one_string():
        check.fail(ctx, node, "property is not a string", prop)


def _check_is_string_list(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property(check.data)
    if prop is None:
        return
    value = prop.val.val
    if value and value[-1] != 0:
        check.fail(ctx, node, "property is not a string list", prop)


def _check_is_cell(check: Check, ctx: CheckContext, node: Node) -> None:
    prop = node.get_property(check.data)
    if prop is None:
        return
    if len(prop.val) != 4:
        check.fail(ctx, node, "property is not a single cell", prop)


def is_string_check(
    name: str, propname: str, warn: bool = False, error: bool = False
) -> Check:
    """A check that the named property, where present, is one string."""
    return Check(name, _check_is_string, propname, warn, error)


def is_string_list_check(
    name: str, propname: str, warn: bool = False, error: bool = False
) -> Check:
    """A check that the named property, where present, is a list of strings."""
    return Check(name, _check_is_string_list, propname, warn, error)


def is_cell_check(
    name: str, propname: str, warn: bool = False, error: bool = False
) -> Check:
    """A check that the named property, where present, is a single cell."""
    return Check(name, _check_is_cell, propname, warn, error)