"""
Operation catalog for wyrmgrad graph nodes.

This package binds every `OpKind` member (except `LEAF`) to an `Operation`
subclass:

- ``_elementwise``  : add, sub, mul, div, neg (broadcast-aware)
- ``_activations``  : square, exp, ln, tanh, sigmoid, relu
- ``_linalg``       : matmul, vector_dot, transpose
- ``_reduction``    : sum, softmax, log_softmax
- ``_structural``   : concat, slice
- ``_lookup``       : index (sparse embedding gather)

Design notes
------------
- Implementation modules are imported for their *side effects*: each class
  registers itself with the catalog through `register_operation`.
- Graph nodes reach an operation only through ``OpKind.<member>.operation``;
  the implementation classes are not part of the public API.
"""

from ._elementwise import *
from ._activations import *
from ._linalg import *
from ._reduction import *
from ._structural import *
from ._lookup import *
from ._catalog import OpKind, register_operation, registered_kinds

__all__ = [
    OpKind.__name__,
    register_operation.__name__,
    registered_kinds.__name__,
]
