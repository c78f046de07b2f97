"""
Parameter persistence boundary.

Parameter values are exported as JSON-safe base64 payloads keyed by
parameter name, and imported back in place. Graph structure and gradients
are never serialized; a loader rebuilds the graph in code and then restores
its parameter values.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from ..encoding._b64 import ndarray_to_payload, payload_to_ndarray

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def export_parameters(graph: Any) -> Dict[str, Dict[str, Any]]:
    """
    Export every parameter of `graph` as a payload.

    Parameters
    ----------
    graph : Graph
        Any object implementing ``named_parameters()`` whose items expose
        ``export_value()``.

    Returns
    -------
    dict[str, dict]
        ``{name: payload}`` in parameter creation order.
    """
    named_params = getattr(graph, "named_parameters", None)
    if not callable(named_params):
        raise AttributeError("Graph must implement named_parameters().")

    return {str(name): ndarray_to_payload(p.export_value()) for name, p in named_params()}


def import_parameters(
    graph: Any, payloads: Dict[str, Dict[str, Any]], *, strict: bool = True
) -> None:
    """
    Load parameter values from payloads, in place.

    Parameters
    ----------
    graph : Graph
        Target graph.
    payloads : dict[str, dict]
        Output of `export_parameters`.
    strict : bool, optional
        If True (default), every parameter of `graph` must be present in
        `payloads` and vice versa.

    Raises
    ------
    KeyError
        If `strict` and a parameter is missing or an extra key is present.
    ShapeMismatchError
        If a stored shape differs from the parameter shape.
    TypeError
        If a stored dtype differs from the parameter dtype.

    Notes
    -----
    Every payload is decoded and checked before any parameter is written, so
    a failed import leaves the graph unchanged. Memoized values computed from
    the old parameters stay in place until the graph begins a new pass.
    """
    named_params = getattr(graph, "named_parameters", None)
    if not callable(named_params):
        raise AttributeError("Graph must implement named_parameters().")

    params = dict(named_params())
    if strict:
        missing = [k for k in params if k not in payloads]
        if missing:
            raise KeyError(f"Missing parameters in checkpoint: {missing}")
        extra = [k for k in payloads if k not in params]
        if extra:
            raise KeyError(f"Unexpected parameters in checkpoint: {extra}")

    # decode and validate everything before the first write
    staged = [
        (p, p.check_import(payload_to_ndarray(payloads[name])))
        for name, p in params.items()
        if name in payloads
    ]
    for p, value in staged:
        p.import_value(value)


def save_parameters(path: Union[str, Path], graph: Any) -> None:
    """
    Write the parameters of `graph` to a JSON file.

    The file holds ``{"format": 1, "parameters": {name: payload}}``.
    """
    path = Path(path)
    doc = {"format": FORMAT_VERSION, "parameters": export_parameters(graph)}
    path.write_text(json.dumps(doc), encoding="utf-8")
    logger.debug("Saved %d parameters to %s", len(doc["parameters"]), path)


def load_parameters(path: Union[str, Path], graph: Any, *, strict: bool = True) -> None:
    """
    Restore the parameters of `graph` from a file written by `save_parameters`.

    Raises
    ------
    ValueError
        If the file is not a parameter checkpoint of a supported format.
    """
    path = Path(path)
    doc = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(doc, dict) or doc.get("format") != FORMAT_VERSION:
        raise ValueError(f"{path} is not a wyrmgrad parameter file (format {FORMAT_VERSION}).")
    import_parameters(graph, doc["parameters"], strict=strict)
    logger.debug("Loaded %d parameters from %s", len(doc["parameters"]), path)
