import math

import pytest
import torch

from lazyblock import (
    ConstantInitializer,
    InitContext,
    Initializer,
    NormalInitializer,
    OnesInitializer,
    Parameter,
    ParameterType,
    ShapeMismatchError,
    UniformInitializer,
    UninitializedParameterError,
    XavierInitializer,
    ZerosInitializer,
)


def test_parameter_starts_unmaterialized():
    param = Parameter("w", ParameterType.WEIGHT)
    assert not param.is_initialized()
    assert param.shape is None
    assert param.initializer is None
    with pytest.raises(UninitializedParameterError):
        param.value
    assert "uninitialized" in repr(param)


def test_parameter_requires_name():
    with pytest.raises(ValueError):
        Parameter("")


def test_type_defaults():
    assert isinstance(ParameterType.WEIGHT.default_initializer(), XavierInitializer)
    assert isinstance(ParameterType.BIAS.default_initializer(), ZerosInitializer)
    assert isinstance(ParameterType.GAMMA.default_initializer(), OnesInitializer)
    assert isinstance(ParameterType.RUNNING_VAR.default_initializer(), OnesInitializer)
    assert Parameter("mean", ParameterType.RUNNING_MEAN).requires_grad is False
    assert Parameter("w", ParameterType.WEIGHT).requires_grad is True
    assert Parameter("w", ParameterType.WEIGHT, requires_grad=False).requires_grad is False


def test_initialize_once_unless_overwritten():
    param = Parameter("w", initializer=ConstantInitializer(1.5))
    param.initialize(InitContext(shape=(2, 2)))
    first = param.value
    assert param.shape == (2, 2)
    assert param.value.requires_grad

    param.set_initializer(ConstantInitializer(9.0))
    param.initialize(InitContext(shape=(2, 2)))
    assert param.value is first

    param.initialize(InitContext(shape=(3,)), overwrite=True)
    assert param.shape == (3,)
    torch.testing.assert_close(param.value.detach(), torch.full((3,), 1.5))


def test_set_initializer_returns_whether_changed():
    a, b = ZerosInitializer(), OnesInitializer()
    param = Parameter("w")
    assert param.set_initializer(a) is True
    assert param.set_initializer(b) is False
    assert param.initializer is a
    assert param.set_initializer(b, overwrite=True) is True
    assert param.initializer is b
    with pytest.raises(TypeError):
        param.set_initializer(object())


def test_overwrite_drops_materialized_value():
    param = Parameter("w")
    param.initialize(InitContext(shape=(2,)))
    param.set_initializer(OnesInitializer(), overwrite=True)
    assert not param.is_initialized()


def test_initializer_shape_divergence_is_rejected():
    class Wrong(Initializer):
        def fill(self, parameter, context):
            return torch.zeros(1)

    param = Parameter("w", initializer=Wrong())
    with pytest.raises(ShapeMismatchError):
        param.initialize(InitContext(shape=(2, 3)))
    assert not param.is_initialized()


def test_reset_load_and_cast():
    param = Parameter("w")
    param.load(torch.arange(4.0))
    assert param.shape == (4,)
    param.cast(torch.float64)
    assert param.value.dtype == torch.float64
    with pytest.raises(ShapeMismatchError):
        param.load(torch.zeros(2))
    param.reset()
    assert not param.is_initialized()
    param.cast(torch.float16)  # remembered for the next load
    assert param.shape is None
    param.load(torch.ones(2))
    assert param.value.dtype == torch.float16


def test_integer_values_do_not_require_grad():
    param = Parameter("steps", ParameterType.OTHER)
    param.load(torch.tensor([1, 2, 3]))
    assert param.value.requires_grad is False


def test_constant_and_uniform_initializers():
    param = Parameter("w")
    ctx = InitContext(shape=(100,), dtype=torch.float64)
    filled = ConstantInitializer(0.25).fill(param, ctx)
    assert filled.dtype == torch.float64
    assert torch.all(filled == 0.25)

    torch.manual_seed(0)
    sample = UniformInitializer(0.1).fill(param, ctx)
    assert sample.abs().max() <= 0.1
    with pytest.raises(ValueError):
        UniformInitializer(-1.0)


def test_normal_initializer_is_seeded_by_torch():
    param = Parameter("w")
    ctx = InitContext(shape=(3, 3))
    torch.manual_seed(4)
    first = NormalInitializer(0.5).fill(param, ctx)
    torch.manual_seed(4)
    second = NormalInitializer(0.5).fill(param, ctx)
    torch.testing.assert_close(first, second)


def test_xavier_fans_and_bounds():
    assert XavierInitializer.fans((4, 3)) == (3, 4)
    assert XavierInitializer.fans((8, 2, 3, 3)) == (18, 72)
    assert XavierInitializer.fans((5,)) == (5, 5)
    with pytest.raises(ValueError):
        XavierInitializer.fans(())

    xavier = XavierInitializer()
    scale = xavier.scale_for((4, 3))
    assert math.isclose(scale, math.sqrt(3.0 / 3.5))
    assert math.isclose(XavierInitializer(factor_type="in").scale_for((4, 3)), 1.0)

    torch.manual_seed(0)
    sample = xavier.fill(Parameter("w"), InitContext(shape=(4, 3)))
    assert sample.shape == (4, 3)
    assert sample.abs().max() <= scale

    gaussian = XavierInitializer(rand_type="gaussian").fill(Parameter("w"), InitContext(shape=(64, 64)))
    assert gaussian.shape == (64, 64)


def test_xavier_rejects_bad_configuration():
    with pytest.raises(ValueError):
        XavierInitializer(rand_type="laplace")
    with pytest.raises(ValueError):
        XavierInitializer(factor_type="sum")
    with pytest.raises(ValueError):
        XavierInitializer(magnitude=0)
