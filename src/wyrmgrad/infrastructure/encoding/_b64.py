from __future__ import annotations

import base64
from typing import Any, Dict

import numpy as np


def bytes_to_b64_str(b: bytes) -> str:
    """
    Encode raw bytes into a base64 ASCII string (JSON-safe).
    """
    return base64.b64encode(b).decode("ascii")


def b64_str_to_bytes(s: str) -> bytes:
    """
    Decode a base64 ASCII string back into raw bytes.

    Raises
    ------
    ValueError
        If `s` is not valid base64.
    """
    return base64.b64decode(s.encode("ascii"), validate=True)


def ndarray_to_payload(arr: np.ndarray) -> Dict[str, Any]:
    """
    Encode an array as a JSON-safe payload.

    Returns
    -------
    dict
        {
          "b64": "<base64 of the C-order bytes>",
          "dtype": "<numpy dtype str>",   # e.g. "<f4", byte order included
          "shape": [...]
        }

    Notes
    -----
    The raw bytes are stored, so decoding reproduces every element exactly.
    """
    a = np.ascontiguousarray(arr)
    return {
        "b64": bytes_to_b64_str(a.tobytes(order="C")),
        "dtype": a.dtype.str,
        "shape": list(a.shape),
    }


def payload_to_ndarray(payload: Dict[str, Any]) -> np.ndarray:
    """
    Decode a payload produced by `ndarray_to_payload`.

    Raises
    ------
    KeyError
        If a payload field is missing.
    ValueError
        If the byte count does not match the declared dtype and shape.
    """
    raw = b64_str_to_bytes(str(payload["b64"]))
    dtype = np.dtype(str(payload["dtype"]))
    shape = tuple(int(x) for x in payload["shape"])

    expected = int(np.prod(shape, dtype=np.int64)) * dtype.itemsize
    if len(raw) != expected:
        raise ValueError(
            f"Payload holds {len(raw)} bytes but {shape} {dtype} needs {expected}."
        )

    # frombuffer is a read-only view on `raw`; return an owning copy
    arr = np.frombuffer(raw, dtype=dtype).reshape(shape)
    return np.array(arr, copy=True, order="C")
