from typing import (
    Any,
    Callable,
    Concatenate,
    Dict,
    Generic,
    Iterable,
    Optional,
    ParamSpec,
    Type,
    TypeVar,
)

T = TypeVar("T")
P = ParamSpec("P")
TReturn = TypeVar("TReturn")


class DynDispatch(Generic[P, TReturn]):
    """Register "handlers" for types and retrieve them for an object of a registered type.

    If the exact type of the object has a handler, that will be retrieved.
    Otherwise inheritance is resolved on a first-come-first-served basis - the first registered type that the object is an instance of is chosen.
    That choice is remembered per concrete type, so each type only pays for the search once.

    You can specify a paramspec for extra arguments to the handler, including the object, and the return type must be consistent for all functions.
    For example, `DynDispatch[[X, Y], R]` will map functions
    - `T1 -> Callable[[T1, X, Y], R]`
    - `T2 -> Callable[[T2, X, Y], R]`"""

    # We only assign _table[t] = f if f takes t, and we only ever call f with something of type t.
    # mypy can't see that, so _table stores functions taking Any.
    _table: Dict[Type[Any], Callable[Concatenate[Any, P], TReturn]]
    _resolved: Dict[Type[Any], Optional[Callable[Concatenate[Any, P], TReturn]]]

    def __init__(self) -> None:
        super().__init__()
        self._table = {}
        self._resolved = {}

    def register_handler(
        self,
        t: Type[T],
        f: Callable[Concatenate[T, P], TReturn],
    ) -> None:
        if t in self._table:
            raise RuntimeError(f"Conflict: registered two handlers for {t}")
        self._table[t] = f
        # A new registration can change how subclasses resolve
        self._resolved.clear()

    def get_handler(self, obj: T) -> Callable[Concatenate[T, P], TReturn] | None:
        obj_type = type(obj)
        if obj_type in self._resolved:
            return self._resolved[obj_type]
        f = self._table.get(obj_type)
        if f is None:
            f = next(
                (handler for t, handler in self._table.items() if isinstance(obj, t)),
                None,
            )
        self._resolved[obj_type] = f
        return f

    def keys(self) -> Iterable[Type[Any]]:
        return self._table.keys()
