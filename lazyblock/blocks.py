# lazyblock/blocks.py

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Sequence

import torch
import torch.nn.functional as F

from .block import Block, Inputs
from .errors import ShapeMismatchError, UnsupportedOperationError
from .parameter import ParameterType
from .types import Auto, DataDesc, Shape, as_shape, as_tensor_list, shapes_of

ANY_SHAPE = DataDesc((...,), name="data")


class LambdaBlock(Block):
    """
    Block wrapping a parameter-free function of the input list.

    Args:
      fn: Maps a list of tensors to a tensor or list of tensors.
      output_shape_fn: Optional map from input shapes to the first output shape.
        When omitted the shape is found by running fn on 'meta' tensors.
      input_descs: Declared inputs; defaults to a single input of any shape.
    """

    def __init__(
        self,
        fn: Callable[[List[torch.Tensor]], Inputs],
        output_shape_fn: Optional[Callable[..., Sequence[int]]] = None,
        input_descs: Optional[Sequence[DataDesc]] = None,
    ) -> None:
        super().__init__()
        if not callable(fn):
            raise TypeError("LambdaBlock requires a callable.")
        self.fn = fn
        self.output_shape_fn = output_shape_fn
        self.input_descs = list(input_descs) if input_descs is not None else [ANY_SHAPE]

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        return self.fn(inputs)

    def describe_input(self) -> List[DataDesc]:
        return list(self.input_descs)

    def get_output_shape(self, *input_shapes: Sequence[int]) -> Shape:
        shapes = self.check_input_shapes(input_shapes)
        if self.output_shape_fn is not None:
            return as_shape(self.output_shape_fn(*shapes))
        meta = [torch.empty(shape, device="meta") for shape in shapes]
        outputs = as_tensor_list(self.fn(meta))
        return as_shape(outputs[0].shape)

    def extra_repr(self) -> str:
        return getattr(self.fn, "__name__", type(self.fn).__name__)


def _identity(inputs: List[torch.Tensor]) -> List[torch.Tensor]:
    return inputs


class Identity(LambdaBlock):
    """Stateless pass-through; construct one wherever needed."""

    def __init__(self) -> None:
        super().__init__(_identity, output_shape_fn=lambda shape: shape)

    def extra_repr(self) -> str:
        return ""


_ACTIVATIONS: Dict[str, Callable[[torch.Tensor], torch.Tensor]] = {
    "relu": F.relu,
    "gelu": F.gelu,
    "tanh": torch.tanh,
    "sigmoid": torch.sigmoid,
    "identity": lambda tensor: tensor,
}


class Activation(LambdaBlock):
    """Elementwise nonlinearity applied to a single input."""

    def __init__(self, kind: str = "relu") -> None:
        if kind not in _ACTIVATIONS:
            raise ValueError(f"Unsupported activation {kind}")
        self.kind = kind
        fn = _ACTIVATIONS[kind]
        super().__init__(lambda inputs: fn(inputs[0]), output_shape_fn=lambda shape: shape)

    def extra_repr(self) -> str:
        return repr(self.kind)


_ELEMENTWISE_OPS: Dict[str, Callable[[torch.Tensor, torch.Tensor], torch.Tensor]] = {
    "add": lambda a, b: a + b,
    "sub": lambda a, b: a - b,
    "mul": lambda a, b: a * b,
    "sub→abs": lambda a, b: torch.abs(a - b),
    "sub→square": lambda a, b: (a - b) * (a - b),
}


class Elementwise(LambdaBlock):
    """
    Simple elementwise operation between two inputs of identical shape.
    """

    def __init__(self, op: str) -> None:
        if op not in _ELEMENTWISE_OPS:
            raise ValueError(f"Unsupported Elementwise op {op}")
        self.op = op
        fn = _ELEMENTWISE_OPS[op]
        super().__init__(
            lambda inputs: fn(inputs[0], inputs[1]),
            output_shape_fn=lambda a, b: a,
            input_descs=[DataDesc((...,), name="a"), DataDesc((...,), name="b")],
        )

    def check_input_shapes(self, input_shapes: Sequence[Sequence[int]]) -> List[Shape]:
        shapes = super().check_input_shapes(input_shapes)
        if shapes[0] != shapes[1]:
            raise ShapeMismatchError(f"Elementwise {self.op!r} needs equal shapes, got {shapes[0]} and {shapes[1]}.")
        return shapes

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        self.check_input_shapes(shapes_of(inputs))
        return super()._forward(inputs, options)

    def extra_repr(self) -> str:
        return repr(self.op)


class ParameterBlock(Block):
    """Base for primitive blocks holding parameters; adds cast() support."""

    def cast(self, dtype: torch.dtype) -> "ParameterBlock":
        for param in self._parameters.values():
            param.cast(dtype)
        self._dtype = dtype
        return self

    def supports_cast(self) -> bool:
        return True

    def _last_dim(self, inputs: Sequence[torch.Tensor]) -> int:
        shapes = self.check_input_shapes(shapes_of(inputs))
        return shapes[0][-1]


class Linear(ParameterBlock):
    """
    Fully connected layer: y = x W^T + b over the last input dimension.

    The input width is taken from the first input seen; weight is
    (units, in_features) and bias is (units,).
    """

    def __init__(self, units: int, bias: bool = True) -> None:
        super().__init__()
        if units < 1:
            raise ValueError("units must be >= 1")
        self.units = int(units)
        self.weight = self.add_parameter("weight", ParameterType.WEIGHT)
        self.bias = self.add_parameter("bias", ParameterType.BIAS) if bias else None

    @property
    def in_features(self) -> Optional[int]:
        shape = self.weight.shape
        return None if shape is None else shape[1]

    def describe_input(self) -> List[DataDesc]:
        width = self.in_features
        return [DataDesc((..., Auto if width is None else width), name="data")]

    def get_parameter_shape(self, name: str, inputs: Inputs) -> Shape:
        if name == "weight":
            return (self.units, self._last_dim(as_tensor_list(inputs)))
        if name == "bias" and self.bias is not None:
            self._last_dim(as_tensor_list(inputs))
            return (self.units,)
        return super().get_parameter_shape(name, inputs)

    def get_output_shape(self, *input_shapes: Sequence[int]) -> Shape:
        shapes = self.check_input_shapes(input_shapes)
        return shapes[0][:-1] + (self.units,)

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        x = inputs[0]
        if x.shape[-1] != self.in_features:
            raise ShapeMismatchError(
                f"Linear was initialized for {self.in_features} input features, got {x.shape[-1]}."
            )
        bias = self.bias.value if self.bias is not None else None
        return F.linear(x, self.weight.value, bias)

    def extra_repr(self) -> str:
        return f"units={self.units}, bias={self.bias is not None}"


class LayerNorm(ParameterBlock):
    """Layer normalization over the last dimension with learnable gamma/beta."""

    def __init__(self, eps: float = 1e-5) -> None:
        super().__init__()
        if eps <= 0:
            raise ValueError("eps must be > 0")
        self.eps = float(eps)
        self.gamma = self.add_parameter("gamma", ParameterType.GAMMA)
        self.beta = self.add_parameter("beta", ParameterType.BETA)

    def describe_input(self) -> List[DataDesc]:
        # Fixed to the normalized width once gamma exists.
        width = Auto if self.gamma.shape is None else self.gamma.shape[0]
        return [DataDesc((..., width), name="data")]

    def get_parameter_shape(self, name: str, inputs: Inputs) -> Shape:
        if name in ("gamma", "beta"):
            return (self._last_dim(as_tensor_list(inputs)),)
        return super().get_parameter_shape(name, inputs)

    def get_output_shape(self, *input_shapes: Sequence[int]) -> Shape:
        return self.check_input_shapes(input_shapes)[0]

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        x = inputs[0]
        width = self.gamma.shape[0]
        if x.shape[-1] != width:
            raise ShapeMismatchError(f"LayerNorm was initialized for width {width}, got {x.shape[-1]}.")
        return F.layer_norm(x, (width,), self.gamma.value, self.beta.value, self.eps)

    def extra_repr(self) -> str:
        return f"eps={self.eps}"


class CompositeBlock(Block):
    """
    Block defined by its children.

    Children are named "{index:02d}{ClassName}" unless a name is given.
    """

    def add(self, block: Block, name: Optional[str] = None) -> "CompositeBlock":
        if name is None:
            name = f"{len(self._children):02d}{type(block).__name__}"
        self.add_child(name, block)
        return self

    def add_all(self, *blocks: Block) -> "CompositeBlock":
        for block in blocks:
            self.add(block)
        return self

    def describe_input(self) -> List[DataDesc]:
        if not self._children:
            return [ANY_SHAPE]
        first = next(iter(self._children.values()))
        return first.describe_input()

    def _castable_children(self) -> List[Block]:
        return [child for child in self._children.values() if child.get_parameters()]

    def supports_cast(self) -> bool:
        return all(child.supports_cast() for child in self._castable_children())

    def cast(self, dtype: torch.dtype) -> "CompositeBlock":
        """
        Cast every child that owns parameters; parameter-free children are left alone.

        Raises UnsupportedOperationError before converting anything if one of
        those children cannot be cast.
        """
        children = self._castable_children()
        for child in children:
            if not child.supports_cast():
                raise UnsupportedOperationError(
                    f"{type(self).__name__} cannot cast: {type(child).__name__} does not support cast()."
                )
        for child in children:
            child.cast(dtype)
        self._dtype = dtype
        return self


class SequentialBlock(CompositeBlock):
    """
    Chain of children: each child's outputs are the next child's inputs.
    """

    def __init__(self, *blocks: Block) -> None:
        super().__init__()
        self.add_all(*blocks)

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        x = inputs
        for child in self._children.values():
            x = child.forward(x, options)
        return x

    def child_input_shapes(self, input_shapes: Sequence[Shape]) -> "OrderedDict[str, List[Shape]]":
        result: "OrderedDict[str, List[Shape]]" = OrderedDict()
        current = [as_shape(shape) for shape in input_shapes]
        for name, child in self._children.items():
            result[name] = current
            current = [child.get_output_shape(*current)]
        return result

    def get_output_shape(self, *input_shapes: Sequence[int]) -> Shape:
        if not self._children:
            return self.check_input_shapes(input_shapes)[0]
        current = [as_shape(shape) for shape in input_shapes]
        for child in self._children.values():
            current = [child.get_output_shape(*current)]
        return current[0]


class ParallelBlock(CompositeBlock):
    """
    Feed the same inputs to every child and join their first outputs.

    Args:
      blocks: Branches, in join order.
      mode: 'concat' joins along the last dimension; 'sum' adds outputs of equal shape.
    """

    MODES = ("concat", "sum")

    def __init__(self, *blocks: Block, mode: str = "concat") -> None:
        super().__init__()
        if mode not in self.MODES:
            raise ValueError(f"Unsupported ParallelBlock mode {mode}")
        self.mode = mode
        self.add_all(*blocks)

    def _require_children(self) -> None:
        if not self._children:
            raise ValueError("ParallelBlock requires at least one child.")

    def _forward(self, inputs: List[torch.Tensor], options: Dict[str, Any]) -> Inputs:
        self._require_children()
        outputs = [child.forward(inputs, options)[0] for child in self._children.values()]
        self._join_shapes([as_shape(out.shape) for out in outputs])
        if self.mode == "concat":
            return torch.cat(outputs, dim=-1)
        return torch.stack(outputs, dim=0).sum(dim=0)

    def _join_shapes(self, shapes: List[Shape]) -> Shape:
        if self.mode == "sum":
            if len(set(shapes)) != 1:
                raise ShapeMismatchError(f"sum mode requires all branch shapes to match, got {shapes}.")
            return shapes[0]
        leading = {shape[:-1] for shape in shapes}
        if len(leading) != 1 or any(len(shape) == 0 for shape in shapes):
            raise ShapeMismatchError(f"concat mode requires matching leading dims, got {shapes}.")
        return shapes[0][:-1] + (sum(shape[-1] for shape in shapes),)

    def child_input_shapes(self, input_shapes: Sequence[Shape]) -> "OrderedDict[str, List[Shape]]":
        shapes = [as_shape(shape) for shape in input_shapes]
        return OrderedDict((name, list(shapes)) for name in self._children)

    def get_output_shape(self, *input_shapes: Sequence[int]) -> Shape:
        self._require_children()
        return self._join_shapes([child.get_output_shape(*input_shapes) for child in self._children.values()])

    def extra_repr(self) -> str:
        return f"mode={self.mode!r}"


class MLP(SequentialBlock):
    """
    Multilayer perceptron: Linear layers with an activation between them.

    Args:
      widths: Output width of each Linear layer; the input width is inferred.
      act: Activation between layers (none after the last).
    """

    def __init__(self, widths: Sequence[int], act: str = "relu") -> None:
        if not widths:
            raise ValueError("widths must contain at least one layer size.")
        super().__init__()
        self.widths = [int(width) for width in widths]
        self.act = act
        for idx, width in enumerate(self.widths):
            self.add(Linear(width))
            if idx < len(self.widths) - 1:
                self.add(Activation(act))

    def extra_repr(self) -> str:
        return f"widths={self.widths}, act={self.act!r}"
