# lazyblock/types.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

import torch

Shape = Tuple[int, ...]


# Sentinel for dimensions that are only known once real inputs arrive
class _AutoDim:
    """Sentinel used in input descriptors to mean 'any positive size'."""
    def __repr__(self) -> str:
        return "Auto"

Auto = _AutoDim()


def as_shape(shape: Iterable[int]) -> Shape:
    """Normalize a torch.Size / list / tuple into a plain tuple of ints."""
    return tuple(int(dim) for dim in shape)


def as_tensor_list(inputs: Union[torch.Tensor, Sequence[torch.Tensor]]) -> List[torch.Tensor]:
    """
    Normalize block inputs into a list of tensors.

    A bare tensor becomes a one-element list.
    """
    if isinstance(inputs, torch.Tensor):
        return [inputs]
    tensors = list(inputs)
    for idx, tensor in enumerate(tensors):
        if not isinstance(tensor, torch.Tensor):
            raise TypeError(f"Input {idx} is {type(tensor).__name__}, expected torch.Tensor.")
    return tensors


def shapes_of(inputs: Sequence[torch.Tensor]) -> List[Shape]:
    return [as_shape(tensor.shape) for tensor in inputs]


@dataclass(frozen=True)
class DataDesc:
    """
    Declared contract for one block input.

    Attributes:
      shape: Expected shape. Entries are ints or Auto; a leading ``...`` accepts
        any number of extra leading dimensions (including none).
      dtype: Optional expected dtype (None accepts any).
      name: Optional logical name, used in error messages.
    """

    shape: Tuple[Any, ...]
    dtype: Optional[torch.dtype] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        for idx, dim in enumerate(self.shape):
            if dim is Ellipsis:
                if idx != 0:
                    raise ValueError("'...' is only allowed as the first entry of a DataDesc shape.")
            elif dim is not Auto and int(dim) <= 0:
                raise ValueError(f"DataDesc dims must be positive, got {dim!r}.")

    @property
    def min_rank(self) -> int:
        return len(self.shape) - (1 if self.shape and self.shape[0] is Ellipsis else 0)

    def matches(self, shape: Iterable[int]) -> bool:
        """True when a concrete shape satisfies this descriptor."""
        concrete = as_shape(shape)
        if any(dim <= 0 for dim in concrete):
            return False
        declared = list(self.shape)
        if declared and declared[0] is Ellipsis:
            declared = declared[1:]
            if len(concrete) < len(declared):
                return False
            concrete = concrete[len(concrete) - len(declared):]
        elif len(concrete) != len(declared):
            return False
        for want, got in zip(declared, concrete):
            if want is not Auto and int(want) != got:
                return False
        return True

    def describe(self) -> str:
        dims = ", ".join("..." if d is Ellipsis else repr(d) for d in self.shape)
        label = self.name or "input"
        return f"{label}({dims})"
