# lazyblock/block.py

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import torch

from .config import get_config
from .errors import (
    ConstructionConflictError,
    ParameterNotFoundError,
    ShapeMismatchError,
    UnsupportedOperationError,
)
from .initializers import InitContext, Initializer
from .parameter import Parameter, ParameterType
from .types import DataDesc, Shape, as_shape, as_tensor_list, shapes_of

logger = logging.getLogger(__name__)

Inputs = Union[torch.Tensor, Sequence[torch.Tensor]]
Options = Optional[Mapping[str, Any]]


class Block:
    """
    Core building block: one computation step owning parameters and/or child blocks.

    Responsibilities:
      - Own an ordered set of direct Parameters and an ordered set of named children.
      - Flatten the parameter tree into qualified names (child + separator + inner name).
      - Lazily materialize direct parameters from the first real inputs.
      - Expose shape inference (get_output_shape, get_parameter_shape) that does not
        need materialized parameters.

    Subclasses implement:
      - _forward(inputs, options) -> outputs
      - get_output_shape(*input_shapes)
      - describe_input()
      - get_parameter_shape(name, inputs) for their own direct parameters
      - child_input_shapes(input_shapes) when they own children
    """

    def __init__(self) -> None:
        self._parameters: "OrderedDict[str, Parameter]" = OrderedDict()
        self._children: "OrderedDict[str, Block]" = OrderedDict()
        self._adopted = False
        self._dtype: Optional[torch.dtype] = None

    # --- Construction APIs ---

    def add_parameter(
        self,
        name: str,
        param_type: ParameterType = ParameterType.OTHER,
        initializer: Optional[Initializer] = None,
        requires_grad: Optional[bool] = None,
    ) -> Parameter:
        """
        Register a direct parameter.

        Raises:
          ConstructionConflictError: if the name is taken or collides with a
            qualified name contributed by a child.
        """
        if name in self._parameters:
            raise ConstructionConflictError(
                f"Duplicate parameter name {name!r} in {type(self).__name__}."
            )
        if name in self._children_parameter_names():
            raise ConstructionConflictError(
                f"Parameter name {name!r} collides with a child parameter of {type(self).__name__}."
            )
        param = Parameter(name, param_type=param_type, initializer=initializer, requires_grad=requires_grad)
        self._parameters[name] = param
        return param

    def add_child(self, name: str, block: "Block") -> "Block":
        """
        Adopt a child block under a local name. Returns the child.

        Children are owned outright: a block can be adopted once and never by
        one of its own descendants.
        """
        if not isinstance(block, Block):
            raise TypeError(f"Children must be Blocks, got {type(block).__name__}.")
        if not name:
            raise ConstructionConflictError("Child name must be a non-empty string.")
        if name in self._children:
            raise ConstructionConflictError(
                f"Duplicate child name {name!r} in {type(self).__name__}."
            )
        if block._adopted:
            raise ConstructionConflictError(
                f"{type(block).__name__} is already a child of another block; re-parenting is not allowed."
            )
        if any(node is self for node in block.iter_blocks()):
            raise ConstructionConflictError(
                f"Adding {name!r} to {type(self).__name__} would create a cycle."
            )
        sep = get_config().separator
        incoming = [f"{name}{sep}{inner}" for inner in block.get_parameters()]
        existing = set(self.get_parameters())
        clashes = [key for key in incoming if key in existing]
        if clashes:
            raise ConstructionConflictError(
                f"Child {name!r} would produce duplicate parameter names {clashes}."
            )
        self._children[name] = block
        block._adopted = True
        return block

    # --- Tree queries ---

    def get_direct_parameters(self) -> List[Parameter]:
        return list(self._parameters.values())

    def get_children(self) -> "OrderedDict[str, Block]":
        return OrderedDict(self._children)

    def get_parameters(self) -> "OrderedDict[str, Parameter]":
        """
        Flatten direct and descendant parameters.

        Direct parameters come first under their own names, followed by each
        child's flattened parameters (in child order) prefixed with the child's
        local name and the configured separator.
        """
        params: "OrderedDict[str, Parameter]" = OrderedDict(self._parameters)
        sep = get_config().separator
        for child_name, child in self._children.items():
            for inner, param in child.get_parameters().items():
                key = f"{child_name}{sep}{inner}"
                if key in params:
                    raise ConstructionConflictError(
                        f"Qualified parameter name {key!r} is ambiguous in {type(self).__name__}."
                    )
                params[key] = param
        return params

    def _children_parameter_names(self) -> List[str]:
        sep = get_config().separator
        return [
            f"{child_name}{sep}{inner}"
            for child_name, child in self._children.items()
            for inner in child.get_parameters()
        ]

    def iter_blocks(self) -> Iterator["Block"]:
        """Yield this block and every descendant, depth first, in child order."""
        yield self
        for child in self._children.values():
            yield from child.iter_blocks()

    def is_initialized(self) -> bool:
        """True iff every direct parameter is materialized."""
        return all(param.is_initialized() for param in self._parameters.values())

    def is_tree_initialized(self) -> bool:
        """True iff this block and every descendant are initialized."""
        return all(block.is_initialized() for block in self.iter_blocks())

    # --- Initializers ---

    def set_initializer(
        self,
        initializer: Initializer,
        param_name: Optional[str] = None,
        overwrite: bool = False,
    ) -> "Block":
        """
        Assign an initializer.

        Args:
          initializer: Strategy to assign.
          param_name: When given, only the direct parameter with this name is
            affected (descendants are never searched).
          overwrite: Replace initializers that are already configured.

        Raises:
          ParameterNotFoundError: if param_name is not a direct parameter.
        """
        if not isinstance(initializer, Initializer):
            raise TypeError(f"Expected an Initializer, got {type(initializer).__name__}.")
        if param_name is not None:
            param = self._parameters.get(param_name)
            if param is None:
                raise ParameterNotFoundError(
                    f"Could not find parameter {param_name!r} in {type(self).__name__}."
                )
            param.set_initializer(initializer, overwrite=overwrite)
            return self
        for param in self._parameters.values():
            param.set_initializer(initializer, overwrite=overwrite)
        for child in self._children.values():
            child.set_initializer(initializer, overwrite=overwrite)
        return self

    # --- Lifecycle ---

    def before_initialize(self, inputs: List[torch.Tensor]) -> None:
        """Hook run once before direct parameters are materialized."""
        self.check_input_shapes(shapes_of(inputs))

    def ensure_initialized(self, inputs: Inputs) -> None:
        """
        Materialize every direct parameter from the given inputs if needed.

        Safe to call repeatedly. Children are not touched; a composite's
        forward initializes them as it calls them. On failure every parameter
        materialized by this call is reset before the error propagates.
        """
        if self.is_initialized():
            return
        inputs = as_tensor_list(inputs)
        self.before_initialize(inputs)
        dtype, device = self._allocation_context(inputs)
        materialized: List[Parameter] = []
        try:
            for param in self._parameters.values():
                if param.is_initialized():
                    continue
                shape = as_shape(self.get_parameter_shape(param.name, inputs))
                param.initialize(InitContext(shape=shape, dtype=dtype, device=device, inputs=inputs))
                materialized.append(param)
        except Exception:
            for param in materialized:
                param.reset()
            raise
        if materialized:
            logger.debug(
                "%s initialized %d parameter(s) from inputs %s",
                type(self).__name__,
                len(materialized),
                shapes_of(inputs),
            )

    def initialize(
        self,
        *input_shapes: Sequence[int],
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
    ) -> "Block":
        """
        Eagerly materialize the whole tree by running one forward pass on
        zero-filled placeholder inputs of the given shapes.
        """
        dtype = dtype or self._dtype or get_config().default_dtype
        placeholders = [torch.zeros(as_shape(shape), dtype=dtype, device=device) for shape in input_shapes]
        with torch.no_grad():
            self.forward(placeholders)
        return self

    def _allocation_context(self, inputs: List[torch.Tensor]):
        dtype = self._dtype
        device = None
        if inputs:
            device = inputs[0].device
            if dtype is None and inputs[0].is_floating_point():
                dtype = inputs[0].dtype
        return dtype or get_config().default_dtype, device

    # --- Computation ---

    def forward(self, inputs: Inputs, options: Options = None) -> List[torch.Tensor]:
        """
        Run the block. Parameters are materialized first if needed.

        Args:
          inputs: A tensor or sequence of tensors.
          options: Named runtime options, forwarded to children by composites.
        """
        inputs = as_tensor_list(inputs)
        self.ensure_initialized(inputs)
        outputs = self._forward(inputs, dict(options or {}))
        return as_tensor_list(outputs)

    def __call__(self, inputs: Inputs, options: Options = None) -> List[torch.Tensor]:
        return self.forward(inputs, options)

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        raise NotImplementedError

    def backward(self) -> None:
        """Hook for block-specific gradient bookkeeping. No-op by default."""

    def cast(self, dtype: torch.dtype) -> "Block":
        raise UnsupportedOperationError(f"{type(self).__name__} does not support cast().")

    def supports_cast(self) -> bool:
        """Whether cast() converts this block instead of raising."""
        return False

    # --- Shape contract ---

    def describe_input(self) -> List[DataDesc]:
        raise NotImplementedError

    def get_output_shape(self, *input_shapes: Sequence[int]) -> Shape:
        raise NotImplementedError

    def check_input_shapes(self, input_shapes: Sequence[Sequence[int]]) -> List[Shape]:
        """
        Validate candidate input shapes against describe_input().

        Returns the shapes as tuples.

        Raises:
          ShapeMismatchError: on a wrong number of inputs or any shape the
            matching descriptor rejects.
        """
        shapes = [as_shape(shape) for shape in input_shapes]
        descs = self.describe_input()
        if len(shapes) != len(descs):
            raise ShapeMismatchError(
                f"{type(self).__name__} expects {len(descs)} input(s), got {len(shapes)}."
            )
        for desc, shape in zip(descs, shapes):
            if not desc.matches(shape):
                raise ShapeMismatchError(
                    f"{type(self).__name__} input {desc.describe()} does not accept shape {shape}."
                )
        return shapes

    def child_input_shapes(self, input_shapes: Sequence[Shape]) -> "OrderedDict[str, List[Shape]]":
        """Input shapes each child receives for the given block input shapes."""
        if self._children:
            raise UnsupportedOperationError(
                f"{type(self).__name__} does not describe the inputs of its children."
            )
        return OrderedDict()

    def get_parameter_shape(self, name: str, inputs: Inputs) -> Shape:
        """
        Shape a parameter takes for the given inputs.

        Subclasses answer for their direct parameters and defer to this method
        for qualified names of descendants.
        """
        inputs = as_tensor_list(inputs)
        sep = get_config().separator
        if name not in self._parameters and self._children:
            dtype = inputs[0].dtype if inputs else get_config().default_dtype
            for child_name, shapes in self.child_input_shapes(shapes_of(inputs)).items():
                prefix = f"{child_name}{sep}"
                if not name.startswith(prefix):
                    continue
                child = self._children[child_name]
                inner = name[len(prefix):]
                if inner not in child.get_parameters():
                    continue
                placeholders = [torch.empty(shape, dtype=dtype, device="meta") for shape in shapes]
                return child.get_parameter_shape(inner, placeholders)
        if name in self._parameters:
            raise UnsupportedOperationError(
                f"{type(self).__name__} does not report a shape for parameter {name!r}."
            )
        raise ParameterNotFoundError(f"Could not find parameter {name!r} in {type(self).__name__}.")

    # --- Serialization ---

    def get_encoded(self) -> bytes:
        """Opaque snapshot of every parameter value in the tree."""
        from .serialization import encode_block

        return encode_block(self)

    def load_encoded(self, data: bytes) -> "Block":
        """Restore parameter values from get_encoded() bytes."""
        from .serialization import decode_into

        decode_into(self, data)
        return self

    # --- Representation ---

    def extra_repr(self) -> str:
        return ""

    def __repr__(self) -> str:
        head = f"{type(self).__name__}({self.extra_repr()}"
        if not self._children:
            return head + ")"
        lines = [head]
        for name, child in self._children.items():
            child_repr = repr(child).replace("\n", "\n  ")
            lines.append(f"  ({name}): {child_repr}")
        return "\n".join(lines) + "\n)"
