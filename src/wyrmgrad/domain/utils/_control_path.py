"""
State-based method dispatch ("control paths") via decorators.

This module routes a single method call to one of several registered
implementations based on a runtime state attribute of the receiving object.

Core idea
---------
- A class declares a *base* method; its signature and docstring are the
  canonical ones.
- Implementations are registered per state value, keyed by
  (ClassName, MethodName, StateVal).
- At call time, the installed wrapper reads the state attribute of `self`
  and dispatches to the implementation registered for that value.

Within wyrmgrad this selects between the strict and fast numerics semantics
of an `ExecutionContext` without if/else chains in every kernel.

Notes
-----
- Decorating the first control path replaces the base method on the class
  with the dispatching wrapper.
- Registered implementations live in a mapping owned by the builder returned
  from `create_path_builder()`; different builders do not share mappings.
- Implementations are called as bound methods: ``impl(self, *args, **kw)``.
"""

from collections import namedtuple
from functools import wraps
from typing import Any, Callable, Dict, Hashable, Optional, Type, Union

from typing_extensions import TypeVar

R = TypeVar("R")

MethodKey = namedtuple("MethodKey", ["ClassName", "MethodName", "StateVal"])
"""Key identifying one control path: (owning class, method name, state)."""


def create_path_builder(
    state_attr: str = "_state",
) -> Callable[..., Callable[[Callable[..., R]], Callable[..., R]]]:
    """
    Create a "path builder" used to register stateful control paths.

    Usage::

        numerics_path = create_path_builder("numerics")

        class Context:
            numerics = NumericsMode.STRICT
            def check(self, arr): ...

        @numerics_path(Context, Context.check, NumericsMode.STRICT)
        def _check_strict(self, arr): ...

        @numerics_path(Context, Context.check, NumericsMode.FAST)
        def _check_fast(self, arr): ...

    Parameters
    ----------
    state_attr : str
        Name of the attribute (or property) on `self` whose value selects the
        implementation.

    Returns
    -------
    Callable
        ``templator(cls, method, state, trap_exception=None) -> decorator``.
    """

    methods_map: Dict[MethodKey, Callable] = {}

    def templator(
        cls: Type,
        method: Callable[..., R],
        state: Hashable,
        trap_exception: Optional[
            Union[Type[Exception], Callable[[Callable[..., R], Any], None]]
        ] = None,
    ) -> Callable[[Callable[..., R]], Callable[..., R]]:
        """
        Build a decorator that registers a control-path implementation.

        Parameters
        ----------
        cls : Type
            Class whose method is replaced by the dispatching wrapper.
        method : Callable
            The base method. Its metadata is copied onto the wrapper.
        state : Hashable
            State value selecting the decorated implementation.
        trap_exception : optional
            What to do when no implementation matches the current state:
            ``None`` raises `NotImplementedError`; an exception class is
            raised; any other callable is invoked as
            ``trap_exception(method, state)`` and then `NotImplementedError`
            is raised.

        Raises
        ------
        TypeError
            If `state` is not hashable.
        """
        try:
            hash(state)
        except TypeError:
            raise TypeError(f"Control-path state must be hashable. Got {state!r}")

        name = getattr(method, "__name__", None) or str(method)
        key = MethodKey(cls.__name__, name, state)

        def decorator(sub_method: Callable[..., R]) -> Callable[..., R]:
            methods_map[key] = sub_method

            @wraps(method)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                if not hasattr(self, state_attr):
                    raise NotImplementedError(
                        f"{type(self)!r} is missing state attribute {state_attr!r}"
                    )
                current = getattr(self, state_attr)
                impl = methods_map.get(MethodKey(cls.__name__, name, current))
                if impl is not None:
                    return impl(self, *args, **kwargs)
                if trap_exception is None:
                    raise NotImplementedError(
                        f"Missing control path (state={current!r}) for {name!r}"
                    )
                if isinstance(trap_exception, type) and issubclass(
                    trap_exception, Exception
                ):
                    raise trap_exception(
                        f"Missing control path (state={current!r}) for {name!r}"
                    )
                trap_exception(method, current)
                raise NotImplementedError(
                    f"Missing control path (state={current!r}) for {name!r}"
                )

            setattr(cls, name, wrapper)
            return sub_method

        return decorator

    return templator
