import io

import pytest
import torch

from lazyblock import (
    MLP,
    EncodingError,
    Linear,
    UninitializedParameterError,
    override_config,
)
from lazyblock.serialization import decode_payload

from blocktools import build_tree, values_of


def test_round_trip_restores_values_and_outputs():
    torch.manual_seed(0)
    source = MLP([6, 2])
    x = torch.randn(3, 4)
    (expected,) = source.forward(x)
    data = source.get_encoded()
    assert isinstance(data, bytes)

    restored = MLP([6, 2]).load_encoded(data)
    assert restored.is_tree_initialized()
    for name, value in values_of(source).items():
        torch.testing.assert_close(restored.get_parameters()[name].value.detach(), value)
    with torch.no_grad():
        torch.testing.assert_close(restored.forward(x)[0], expected.detach())


def test_encoding_is_reproducible_for_same_state():
    torch.manual_seed(1)
    block = build_tree()
    block.forward(torch.randn(2, 3))
    first = decode_payload(block.get_encoded())
    second = decode_payload(block.get_encoded())
    assert list(first["parameters"]) == list(block.get_parameters())
    for name in first["parameters"]:
        torch.testing.assert_close(first["parameters"][name], second["parameters"][name])
    assert first["block"] == "Node"
    assert first["version"] == 1


def test_load_overwrites_materialized_values():
    torch.manual_seed(2)
    a = Linear(3)
    b = Linear(3)
    a.forward(torch.randn(1, 4))
    b.forward(torch.randn(1, 4))
    b.load_encoded(a.get_encoded())
    torch.testing.assert_close(b.weight.value.detach(), a.weight.value.detach())


def test_encoding_requires_materialized_parameters():
    with pytest.raises(UninitializedParameterError):
        Linear(2).get_encoded()


def test_decoding_rejects_mismatches():
    torch.manual_seed(3)
    linear = Linear(3)
    linear.forward(torch.randn(1, 4))
    data = linear.get_encoded()

    with pytest.raises(EncodingError):
        MLP([3]).load_encoded(data)
    with pytest.raises(EncodingError):
        Linear(3, bias=False).load_encoded(data)

    wider = Linear(3)
    wider.forward(torch.randn(1, 5))
    with pytest.raises(EncodingError):
        wider.load_encoded(data)
    assert wider.weight.shape == (3, 5)


def test_decoding_rejects_foreign_data():
    with pytest.raises(EncodingError):
        decode_payload(b"not an encoded block")

    buffer = io.BytesIO()
    torch.save({"format": "other", "version": 1}, buffer)
    with pytest.raises(EncodingError):
        decode_payload(buffer.getvalue())


def test_decoding_rejects_unknown_version():
    torch.manual_seed(4)
    linear = Linear(2)
    linear.forward(torch.randn(1, 2))
    with override_config(encoding_version=2):
        data = linear.get_encoded()
    with pytest.raises(EncodingError):
        Linear(2).load_encoded(data)


def test_load_keeps_cast_dtype():
    torch.manual_seed(5)
    source = Linear(3)
    source.forward(torch.randn(1, 4))
    data = source.get_encoded()

    trained = Linear(3)
    trained.forward(torch.randn(1, 4))
    trained.cast(torch.float64)
    trained.load_encoded(data)
    assert trained.weight.value.dtype == torch.float64
    torch.testing.assert_close(trained.weight.value.detach(), source.weight.value.detach().double())

    fresh = Linear(3).cast(torch.float64).load_encoded(data)
    assert fresh.bias.value.dtype == torch.float64
    (y,) = fresh.forward(torch.randn(1, 4, dtype=torch.float64))
    assert y.dtype == torch.float64
