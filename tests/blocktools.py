"""Small block variants shared by the tests."""

from collections import OrderedDict

import torch

from lazyblock import Auto, Block, DataDesc
from lazyblock.types import as_tensor_list, shapes_of


class Leaf(Block):
    """Adds one (width,) vector per parameter to its input."""

    def __init__(self, *names: str) -> None:
        super().__init__()
        for name in names:
            self.add_parameter(name)

    def describe_input(self):
        return [DataDesc((..., Auto), name="data")]

    def get_parameter_shape(self, name, inputs):
        if name in self._parameters:
            shapes = self.check_input_shapes(shapes_of(as_tensor_list(inputs)))
            return (shapes[0][-1],)
        return super().get_parameter_shape(name, inputs)

    def get_output_shape(self, *input_shapes):
        return self.check_input_shapes(input_shapes)[0]

    def _forward(self, inputs, options):
        x = inputs[0]
        for param in self._parameters.values():
            x = x + param.value
        return x


class Node(Leaf):
    """Leaf that also runs a chain of named children after its own parameters."""

    def __init__(self, params=(), children=()) -> None:
        super().__init__(*params)
        for name, child in children:
            self.add_child(name, child)

    def child_input_shapes(self, input_shapes):
        return OrderedDict((name, list(input_shapes)) for name in self._children)

    def _forward(self, inputs, options):
        x = super()._forward(inputs, options)
        for child in self._children.values():
            x = child.forward([x], options)[0]
        return x


def build_tree() -> Node:
    """
    root(p0)
      a(p1, p2)
        c(p3)
      b()
        d(p4)
    """
    c = Leaf("p3")
    a = Node(params=("p1", "p2"), children=[("c", c)])
    d = Leaf("p4")
    b = Node(children=[("d", d)])
    return Node(params=("p0",), children=[("a", a), ("b", b)])


def values_of(block: Block):
    return {name: param.value.detach().clone() for name, param in block.get_parameters().items()}


def zeros(*shape: int) -> torch.Tensor:
    return torch.zeros(*shape)
