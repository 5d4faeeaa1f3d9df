# lazyblock/parameter.py

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import torch

from .errors import ShapeMismatchError, UninitializedParameterError
from .initializers import (
    InitContext,
    Initializer,
    OnesInitializer,
    XavierInitializer,
    ZerosInitializer,
)
from .types import Shape, as_shape

logger = logging.getLogger(__name__)


class ParameterType(Enum):
    """Role of a parameter inside its block; decides the default initializer."""

    WEIGHT = "weight"
    BIAS = "bias"
    GAMMA = "gamma"
    BETA = "beta"
    RUNNING_MEAN = "running_mean"
    RUNNING_VAR = "running_var"
    OTHER = "other"

    def default_initializer(self) -> Initializer:
        if self is ParameterType.WEIGHT:
            return XavierInitializer()
        if self in (ParameterType.GAMMA, ParameterType.RUNNING_VAR):
            return OnesInitializer()
        return ZerosInitializer()

    @property
    def requires_grad(self) -> bool:
        return self not in (ParameterType.RUNNING_MEAN, ParameterType.RUNNING_VAR)


class Parameter:
    """
    A named slot for one learnable value.

    Two states:
      - unmaterialized: only configuration (name, type, initializer) is held.
      - materialized: additionally holds a torch.nn.Parameter value.

    initialize() is the single transition into the materialized state; reset()
    is the only way back.
    """

    def __init__(
        self,
        name: str,
        param_type: ParameterType = ParameterType.OTHER,
        initializer: Optional[Initializer] = None,
        requires_grad: Optional[bool] = None,
    ) -> None:
        if not name:
            raise ValueError("Parameter name must be a non-empty string.")
        self.name = name
        self.param_type = param_type
        self.requires_grad = param_type.requires_grad if requires_grad is None else bool(requires_grad)
        self._initializer = initializer
        self._value: Optional[torch.nn.Parameter] = None
        self._dtype: Optional[torch.dtype] = None

    def __repr__(self) -> str:
        state = f"shape={self.shape}" if self.is_initialized() else "uninitialized"
        return f"Parameter({self.name!r}, {self.param_type.name}, {state})"

    # --- Initializer configuration ---

    @property
    def initializer(self) -> Optional[Initializer]:
        """The explicitly configured initializer, or None."""
        return self._initializer

    @property
    def effective_initializer(self) -> Initializer:
        """The initializer materialization will use."""
        if self._initializer is not None:
            return self._initializer
        return self.param_type.default_initializer()

    def set_initializer(self, initializer: Initializer, overwrite: bool = False) -> bool:
        """
        Store an initializer.

        Without overwrite an already configured initializer is kept. With
        overwrite it is replaced, and a materialized value is dropped so the
        next initialization uses the new strategy.

        Returns:
          True if the configured initializer changed.
        """
        if not isinstance(initializer, Initializer):
            raise TypeError(f"Expected an Initializer, got {type(initializer).__name__}.")
        if self._initializer is not None and not overwrite:
            return False
        self._initializer = initializer
        if overwrite and self._value is not None:
            logger.debug("Parameter %s reset after initializer override with %r", self.name, initializer)
            self._value = None
        return True

    # --- Materialization ---

    def is_initialized(self) -> bool:
        return self._value is not None

    @property
    def value(self) -> torch.nn.Parameter:
        if self._value is None:
            raise UninitializedParameterError(f"Parameter {self.name!r} has not been initialized.")
        return self._value

    @property
    def shape(self) -> Optional[Shape]:
        if self._value is None:
            return None
        return as_shape(self._value.shape)

    def initialize(self, context: InitContext, overwrite: bool = False) -> None:
        """
        Materialize the value from the effective initializer.

        No-op when already materialized unless overwrite is set.
        """
        if self._value is not None and not overwrite:
            return
        initializer = self.effective_initializer
        with torch.no_grad():
            tensor = initializer.fill(self, context)
        if as_shape(tensor.shape) != as_shape(context.shape):
            raise ShapeMismatchError(
                f"{initializer!r} produced shape {tuple(tensor.shape)} for parameter "
                f"{self.name!r}, expected {tuple(context.shape)}."
            )
        self._value = self._wrap(tensor)
        logger.debug("Materialized %s %s with %r", self.name, tuple(tensor.shape), initializer)

    def reset(self) -> None:
        """Drop the materialized value."""
        self._value = None

    def load(self, tensor: torch.Tensor) -> None:
        """
        Materialize from an existing tensor (e.g. a decoded snapshot).

        The stored dtype and device win over the incoming tensor's: a cast dtype
        first, then those of the current value.
        """
        if self._value is not None and as_shape(self._value.shape) != as_shape(tensor.shape):
            raise ShapeMismatchError(
                f"Cannot load shape {tuple(tensor.shape)} into parameter {self.name!r} "
                f"of shape {self.shape}."
            )
        dtype, device = self._dtype, None
        if self._value is not None:
            dtype = dtype or self._value.dtype
            device = self._value.device
        self._value = self._wrap(tensor.detach().to(device=device, dtype=dtype, copy=True))

    def cast(self, dtype: torch.dtype) -> None:
        """Convert the value; an unmaterialized parameter keeps dtype for load()."""
        self._dtype = dtype
        if self._value is None:
            return
        self._value = self._wrap(self._value.detach().to(dtype))

    def _wrap(self, tensor: torch.Tensor) -> torch.nn.Parameter:
        # Integer tensors cannot require grad.
        requires_grad = self.requires_grad and (tensor.is_floating_point() or tensor.is_complex())
        return torch.nn.Parameter(tensor, requires_grad=requires_grad)
