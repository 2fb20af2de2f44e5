from __future__ import annotations


class DualTreeError(Exception):
    """Base class for all errors raised by :mod:`dualtree`."""


class InvalidConfiguration(DualTreeError, ValueError):
    """Raised when a tree or solver cannot be built from the supplied arguments."""


class InvalidArgument(DualTreeError, ValueError):
    """Raised when a query or solver call receives arguments it cannot honour."""


class InternalError(DualTreeError, RuntimeError):
    """Raised when an internal invariant is violated (indicates a bug)."""


__all__ = [
    "DualTreeError",
    "InvalidConfiguration",
    "InvalidArgument",
    "InternalError",
]
