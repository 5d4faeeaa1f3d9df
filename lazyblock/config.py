# lazyblock/config.py

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Iterator

import torch


@dataclass(frozen=True)
class BlockConfig:
    """
    Process-wide settings read by blocks.

    Attributes:
      separator: Joins a child's local name to its inner parameter names.
      default_dtype: dtype of placeholder inputs used by Block.initialize().
      encoding_version: Version tag written by get_encoded().
    """

    separator: str = "_"
    default_dtype: torch.dtype = torch.float32
    encoding_version: int = 1

    def __post_init__(self) -> None:
        if not self.separator:
            raise ValueError("separator must be a non-empty string")
        if self.encoding_version < 1:
            raise ValueError("encoding_version must be >= 1")


_current = BlockConfig()


def get_config() -> BlockConfig:
    return _current


def set_config(config: BlockConfig) -> BlockConfig:
    """Install a new config and return the previous one."""
    global _current
    if not isinstance(config, BlockConfig):
        raise TypeError("set_config() expects a BlockConfig")
    previous = _current
    _current = config
    return previous


@contextmanager
def override_config(**changes: Any) -> Iterator[BlockConfig]:
    """
    Temporarily replace fields of the current config.

    Example:
      with override_config(separator="."):
          names = list(model.get_parameters())
    """
    previous = set_config(replace(_current, **changes))
    try:
        yield _current
    finally:
        set_config(previous)
