# lazyblock/serialization.py

from __future__ import annotations

import io
import logging
from collections import OrderedDict
from typing import TYPE_CHECKING, Any, Dict

import torch

from .config import get_config
from .errors import EncodingError, UninitializedParameterError
from .types import as_shape

if TYPE_CHECKING:
    from .block import Block

logger = logging.getLogger(__name__)

FORMAT_MARKER = "lazyblock"
SUPPORTED_VERSIONS = (1,)


def encode_block(block: "Block") -> bytes:
    """
    Serialize every parameter value of a block tree.

    Layout (torch.save of a plain dict):
      format: "lazyblock"
      version: encoding version from the current BlockConfig
      block: class name of the encoded block
      parameters: OrderedDict of qualified name -> tensor
    """
    params = block.get_parameters()
    missing = [name for name, param in params.items() if not param.is_initialized()]
    if missing:
        raise UninitializedParameterError(
            f"Cannot encode {type(block).__name__}: uninitialized parameters {missing}."
        )
    payload: Dict[str, Any] = {
        "format": FORMAT_MARKER,
        "version": get_config().encoding_version,
        "block": type(block).__name__,
        "parameters": OrderedDict(
            (name, param.value.detach().cpu()) for name, param in params.items()
        ),
    }
    buffer = io.BytesIO()
    torch.save(payload, buffer)
    data = buffer.getvalue()
    logger.debug("Encoded %s: %d parameter(s), %d bytes", type(block).__name__, len(params), len(data))
    return data


def decode_payload(data: bytes) -> Dict[str, Any]:
    """Read and validate the envelope written by encode_block()."""
    try:
        payload = torch.load(io.BytesIO(data), map_location="cpu", weights_only=True)
    except Exception as exc:
        raise EncodingError(f"Could not read encoded block: {exc}") from exc
    if not isinstance(payload, dict) or payload.get("format") != FORMAT_MARKER:
        raise EncodingError("Data is not an encoded lazyblock block.")
    version = payload.get("version")
    if version not in SUPPORTED_VERSIONS:
        raise EncodingError(f"Unsupported encoding version {version!r}.")
    if not isinstance(payload.get("parameters"), dict):
        raise EncodingError("Encoded block has no parameter table.")
    return payload


def decode_into(block: "Block", data: bytes) -> None:
    """
    Restore parameter values into a block built the same way as the encoder's.

    Nothing is modified unless the whole payload matches the block.
    """
    payload = decode_payload(data)
    if payload["block"] != type(block).__name__:
        raise EncodingError(
            f"Encoded state belongs to {payload['block']}, not {type(block).__name__}."
        )
    stored = payload["parameters"]
    params = block.get_parameters()
    if list(stored) != list(params):
        expected, got = set(params), set(stored)
        raise EncodingError(
            f"Parameter names differ: missing {sorted(expected - got)}, unexpected {sorted(got - expected)}."
        )
    for name, param in params.items():
        tensor = stored[name]
        if not isinstance(tensor, torch.Tensor):
            raise EncodingError(f"Encoded value for {name!r} is not a tensor.")
        if param.is_initialized() and param.shape != as_shape(tensor.shape):
            raise EncodingError(
                f"Shape of {name!r} differs: block has {param.shape}, data has {tuple(tensor.shape)}."
            )
    for name, param in params.items():
        param.load(stored[name])
    logger.debug("Decoded %d parameter(s) into %s", len(params), type(block).__name__)
