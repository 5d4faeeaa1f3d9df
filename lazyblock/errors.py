# lazyblock/errors.py

from __future__ import annotations


class BlockError(Exception):
    """Root of every error raised by lazyblock."""


class ParameterNotFoundError(BlockError, KeyError):
    """A parameter name was not found among a block's direct parameters."""

    def __str__(self) -> str:
        # KeyError repr()s its message; keep it readable.
        return str(self.args[0]) if self.args else ""


class UnsupportedOperationError(BlockError, NotImplementedError):
    """A block variant declines a capability it does not implement."""


class ShapeMismatchError(BlockError, ValueError):
    """Inputs are incompatible with a block's declared input contract."""


class ConstructionConflictError(BlockError, ValueError):
    """Composition would produce ambiguous names or an invalid tree."""


class UninitializedParameterError(BlockError, RuntimeError):
    """A parameter value was requested before materialization."""


class EncodingError(BlockError, ValueError):
    """Encoded block state could not be decoded into a block."""
