"""
Key normalization.

A key is either a string, a sequence of fetch arguments, or a zero-argument
function producing one of those. Normalizing yields the serialized identity
used by the store, deduplicator and broadcaster, plus the original
arguments to hand to the fetcher.
"""
import json
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from .errors import InvalidKeyError, KeyResolutionError

logger = logging.getLogger("swrcache.keys")

KeyInput = Union[str, Sequence[Any], Callable[[], Any], None]

ARGS_PREFIX = "args@"


@dataclass(frozen=True)
class NormalizedKey:
    """Serialized key plus the arguments the fetcher should receive."""
    key: Optional[str]
    args: Tuple[Any, ...] = ()

    @property
    def is_absent(self) -> bool:
        return self.key is None


ABSENT = NormalizedKey(key=None)


class _IdentityTable:
    """
    Hands out stable tokens for objects that cannot be stringified.

    Objects that support weak references are tracked weakly and drop out of
    the table once collected. Others (lists, dicts, plain ``object()``) are
    held strongly so that ``id()`` is never reused for a different object
    while the token is in use; ``clear()`` releases them.
    """

    def __init__(self):
        self._weak: Dict[int, Tuple[weakref.ref, int]] = {}
        self._strong: Dict[int, Tuple[Any, int]] = {}
        self._counter = 0

    def token(self, obj: Any) -> str:
        ident = id(obj)
        entry = self._weak.get(ident)
        if entry is not None and entry[0]() is obj:
            return f"#{entry[1]}"
        strong = self._strong.get(ident)
        if strong is not None and strong[0] is obj:
            return f"#{strong[1]}"

        self._counter += 1
        try:
            ref = weakref.ref(obj, lambda dead, ident=ident: self._forget(ident, dead))
        except TypeError:
            self._strong[ident] = (obj, self._counter)
        else:
            self._weak[ident] = (ref, self._counter)
        return f"#{self._counter}"

    def _forget(self, ident: int, ref: weakref.ref) -> None:
        entry = self._weak.get(ident)
        if entry is not None and entry[0] is ref:
            del self._weak[ident]

    def clear(self) -> None:
        self._weak.clear()
        self._strong.clear()

    def __len__(self) -> int:
        return len(self._weak) + len(self._strong)


_identities = _IdentityTable()


def _stable_dumps(value: Any) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        default=_identities.token,
    )


def _serialize_arg(arg: Any) -> str:
    """Stable string for one argument, falling back to an identity token."""
    try:
        return _stable_dumps(arg)
    except (TypeError, ValueError):
        # Cyclic containers and dicts with non-string keys
        return json.dumps(_identities.token(arg))


def serialize_args(args: Sequence[Any]) -> str:
    """Build the serialized key for a sequence of fetch arguments."""
    return ARGS_PREFIX + "[" + ",".join(_serialize_arg(arg) for arg in args) + "]"


def clear_identities() -> int:
    """Release every identity token; returns how many were held."""
    count = len(_identities)
    _identities.clear()
    return count


def resolve_key(key_fn: Callable[[], Any]) -> Any:
    """
    Invoke a key-producing function.

    Raises:
        KeyResolutionError: If the function raised
    """
    try:
        return key_fn()
    except Exception as e:
        raise KeyResolutionError(key_fn, e) from e


def normalize_key(key_input: KeyInput) -> NormalizedKey:
    """
    Normalize a key into (serialized key, fetch args).

    Args:
        key_input: String, list/tuple of args, or a function returning either

    Returns:
        NormalizedKey; ``ABSENT`` when the key is falsy or could not be resolved

    Raises:
        InvalidKeyError: If a string key uses the reserved argument-list prefix
        TypeError: If the key is not a string, list, tuple or function
    """
    if callable(key_input):
        try:
            key_input = resolve_key(key_input)
        except KeyResolutionError as e:
            logger.debug(f"Treating key as absent: {e}")
            return ABSENT

    if not key_input:
        return ABSENT

    if isinstance(key_input, str):
        if key_input.startswith(ARGS_PREFIX):
            raise InvalidKeyError(key_input, f"the {ARGS_PREFIX!r} prefix is reserved for argument-list keys")
        return NormalizedKey(key=key_input, args=(key_input,))

    if isinstance(key_input, (list, tuple)):
        args = tuple(key_input)
        return NormalizedKey(key=serialize_args(args), args=args)

    raise TypeError(
        f"Unsupported key type {type(key_input).__name__}; "
        "expected str, list, tuple or a function returning one"
    )
