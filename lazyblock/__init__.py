# lazyblock/__init__.py

import logging

from .types import Auto, DataDesc, Shape
from .errors import (
    BlockError,
    ParameterNotFoundError,
    UnsupportedOperationError,
    ShapeMismatchError,
    ConstructionConflictError,
    UninitializedParameterError,
    EncodingError,
)
from .config import BlockConfig, get_config, set_config, override_config
from .initializers import (
    InitContext,
    Initializer,
    ConstantInitializer,
    ZerosInitializer,
    OnesInitializer,
    UniformInitializer,
    NormalInitializer,
    XavierInitializer,
)
from .parameter import Parameter, ParameterType
from .block import Block
from .blocks import (
    LambdaBlock,
    Identity,
    Activation,
    Elementwise,
    ParameterBlock,
    Linear,
    LayerNorm,
    CompositeBlock,
    SequentialBlock,
    ParallelBlock,
    MLP,
)
from .logging_utils import configure_logging, disable_logging, log_parameter_summary

__all__ = [
    "Auto",
    "DataDesc",
    "Shape",
    "BlockError",
    "ParameterNotFoundError",
    "UnsupportedOperationError",
    "ShapeMismatchError",
    "ConstructionConflictError",
    "UninitializedParameterError",
    "EncodingError",
    "BlockConfig",
    "get_config",
    "set_config",
    "override_config",
    "InitContext",
    "Initializer",
    "ConstantInitializer",
    "ZerosInitializer",
    "OnesInitializer",
    "UniformInitializer",
    "NormalInitializer",
    "XavierInitializer",
    "Parameter",
    "ParameterType",
    "Block",
    "LambdaBlock",
    "Identity",
    "Activation",
    "Elementwise",
    "ParameterBlock",
    "Linear",
    "LayerNorm",
    "CompositeBlock",
    "SequentialBlock",
    "ParallelBlock",
    "MLP",
    "configure_logging",
    "disable_logging",
    "log_parameter_summary",
]

logging.getLogger(__name__).addHandler(logging.NullHandler())
