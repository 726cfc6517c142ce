"""Device tree data model, tree checks and format-guessing helpers."""

__version__ = "0.1.0"

__all__ = ["busses", "checkbase", "checks", "data", "formats", "providers", "structural", "tree"]