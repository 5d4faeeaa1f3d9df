# lazyblock/initializers.py

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

import torch

from .types import Shape

if TYPE_CHECKING:
    from .parameter import Parameter


@dataclass(frozen=True)
class InitContext:
    """
    Everything an Initializer may look at when filling a parameter.

    Attributes:
      shape: Concrete shape the parameter must take.
      dtype: dtype of the materialized value.
      device: Device the value is allocated on.
      inputs: The block inputs that triggered materialization (may be empty).
    """

    shape: Shape
    dtype: torch.dtype = torch.float32
    device: Optional[torch.device] = None
    inputs: List[torch.Tensor] = field(default_factory=list, compare=False, repr=False)


class Initializer:
    """
    Strategy that produces the first value of a Parameter.

    Subclasses implement fill(); they should be stateless so a single instance
    can be shared by any number of parameters.
    """

    def fill(self, parameter: "Parameter", context: InitContext) -> torch.Tensor:
        raise NotImplementedError

    def _empty(self, context: InitContext) -> torch.Tensor:
        return torch.empty(context.shape, dtype=context.dtype, device=context.device)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ConstantInitializer(Initializer):
    def __init__(self, value: float) -> None:
        self.value = float(value)

    def fill(self, parameter: "Parameter", context: InitContext) -> torch.Tensor:
        return torch.full(context.shape, self.value, dtype=context.dtype, device=context.device)

    def __repr__(self) -> str:
        return f"ConstantInitializer({self.value})"


class ZerosInitializer(ConstantInitializer):
    def __init__(self) -> None:
        super().__init__(0.0)

    def __repr__(self) -> str:
        return "ZerosInitializer()"


class OnesInitializer(ConstantInitializer):
    def __init__(self) -> None:
        super().__init__(1.0)

    def __repr__(self) -> str:
        return "OnesInitializer()"


class UniformInitializer(Initializer):
    """Samples from U(-scale, scale)."""

    def __init__(self, scale: float = 0.07) -> None:
        if scale < 0:
            raise ValueError("scale must be >= 0")
        self.scale = float(scale)

    def fill(self, parameter: "Parameter", context: InitContext) -> torch.Tensor:
        return self._empty(context).uniform_(-self.scale, self.scale)

    def __repr__(self) -> str:
        return f"UniformInitializer(scale={self.scale})"


class NormalInitializer(Initializer):
    """Samples from N(0, sigma^2)."""

    def __init__(self, sigma: float = 0.01) -> None:
        if sigma < 0:
            raise ValueError("sigma must be >= 0")
        self.sigma = float(sigma)

    def fill(self, parameter: "Parameter", context: InitContext) -> torch.Tensor:
        return self._empty(context).normal_(0.0, self.sigma)

    def __repr__(self) -> str:
        return f"NormalInitializer(sigma={self.sigma})"


class XavierInitializer(Initializer):
    """
    Xavier/Glorot initialization.

    Args:
      rand_type: 'uniform' samples U(-s, s); 'gaussian' samples N(0, s^2).
      factor_type: Which fan to scale by: 'avg' ((in + out) / 2), 'in' or 'out'.
      magnitude: Numerator of the scale; s = sqrt(magnitude / factor).
    """

    RAND_TYPES = ("uniform", "gaussian")
    FACTOR_TYPES = ("avg", "in", "out")

    def __init__(
        self,
        rand_type: str = "uniform",
        factor_type: str = "avg",
        magnitude: float = 3.0,
    ) -> None:
        if rand_type not in self.RAND_TYPES:
            raise ValueError(f"rand_type must be one of {self.RAND_TYPES}, got {rand_type!r}")
        if factor_type not in self.FACTOR_TYPES:
            raise ValueError(f"factor_type must be one of {self.FACTOR_TYPES}, got {factor_type!r}")
        if magnitude <= 0:
            raise ValueError("magnitude must be > 0")
        self.rand_type = rand_type
        self.factor_type = factor_type
        self.magnitude = float(magnitude)

    @staticmethod
    def fans(shape: Shape) -> tuple:
        if len(shape) == 0:
            raise ValueError("Xavier initialization requires at least one dimension.")
        if len(shape) == 1:
            return shape[0], shape[0]
        receptive = 1
        for dim in shape[2:]:
            receptive *= dim
        return shape[1] * receptive, shape[0] * receptive

    def scale_for(self, shape: Shape) -> float:
        fan_in, fan_out = self.fans(shape)
        if self.factor_type == "avg":
            factor = (fan_in + fan_out) / 2.0
        elif self.factor_type == "in":
            factor = fan_in
        else:
            factor = fan_out
        return math.sqrt(self.magnitude / factor)

    def fill(self, parameter: "Parameter", context: InitContext) -> torch.Tensor:
        scale = self.scale_for(context.shape)
        tensor = self._empty(context)
        if self.rand_type == "uniform":
            return tensor.uniform_(-scale, scale)
        return tensor.normal_(0.0, scale)

    def __repr__(self) -> str:
        return (
            f"XavierInitializer(rand_type={self.rand_type!r}, "
            f"factor_type={self.factor_type!r}, magnitude={self.magnitude})"
        )
