"""Input and output format selection and option values for the compiler."""

from __future__ import annotations

import enum
import os
import stat

DEFAULT_FDT_VERSION = 17
FDT_MAGIC = 0xD00DFEED


class PhandleFormat(enum.IntFlag):
    """Which phandle properties are written for each node."""

    LEGACY = 0x1
    EPAPR = 0x2
    BOTH = 0x3


_PHANDLE_FORMATS = {
    "legacy": PhandleFormat.LEGACY,
    "epapr": PhandleFormat.EPAPR,
    "both": PhandleFormat.BOTH,
}


def parse_phandle_format(text: str) -> PhandleFormat:
    """The phandle format named by text: legacy, epapr or both."""
    try:
        return _PHANDLE_FORMATS[text]
    except KeyError:
        raise ValueError(f'Invalid argument "{text}" to -H option') from None


def is_power_of_2(value: int) -> bool:
    """True if value is a positive power of two."""
    return value > 0 and (value & (value - 1)) == 0


_EXTENSIONS = {".dts": "dts", ".yaml": "yaml", ".dtb": "dtb"}


def guess_type_by_name(fname: str, fallback: str | None) -> str | None:
    """The format implied by the file name's extension, or fallback."""
    dot = fname.rfind(".")
    if dot < 0:
        return fallback
    return _EXTENSIONS.get(fname[dot:].lower(), fallback)


def guess_input_format(fname: str, fallback: str | None) -> str | None:
    """Guess an input's format from what it is, its magic number and its name."""
    try:
        info = os.stat(fname)
    except OSError:
        return fallback
    if stat.S_ISDIR(info.st_mode):
        return "fs"
    if not stat.S_ISREG(info.st_mode):
        return fallback
    try:
        with open(fname, "rb") as stream:
            magic = stream.read(4)
    except OSError:
        return fallback
    if len(magic) != 4:
        return fallback
    if int.from_bytes(magic, "big") == FDT_MAGIC:
        return "dtb"
    return guess_type_by_name(fname, fallback)