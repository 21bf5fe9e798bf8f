"""
Fetch middleware.

A middleware takes the next fetch function and returns a new one with the
same ``fetch(*args)`` shape, so it can rewrite arguments, transform results,
log, or short-circuit. Middlewares listed first wrap outermost:

    options = RevalidateOptions(fetcher=load, middlewares=[logger_mw, auth_mw])
    # logger_mw(auth_mw(load))
"""
import inspect
from typing import Any, Awaitable, Callable, Sequence, Tuple

Fetcher = Callable[..., Any]
Middleware = Callable[[Callable[..., Awaitable[Any]]], Fetcher]


async def call_fetcher(fetcher: Fetcher, args: Tuple[Any, ...]) -> Any:
    """Run a sync or async fetcher."""
    result = fetcher(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _as_async(fetcher: Fetcher) -> Callable[..., Awaitable[Any]]:
    async def fetch(*args: Any) -> Any:
        return await call_fetcher(fetcher, args)

    return fetch


def compose(fetcher: Fetcher, middlewares: Sequence[Middleware]) -> Callable[..., Awaitable[Any]]:
    """
    Wrap ``fetcher`` in ``middlewares``, first one outermost.

    Every layer receives an async ``next`` regardless of whether the layer
    below it is sync or async.
    """
    wrapped = _as_async(fetcher)
    for middleware in reversed(middlewares):
        wrapped = _as_async(middleware(wrapped))
    return wrapped


def with_middleware(target: Any, middleware: Middleware) -> Any:
    """
    Append ``middleware`` for a manager or an options object.

    Args:
        target: ``RevalidateOptions`` or ``CacheManager``

    Returns:
        For options, a copy with the middleware appended. For a manager, a
        ``subscribe``-compatible function whose subscriptions run the
        middleware after any they were given; the manager itself is not
        changed.
    """
    # Local imports: options and manager both import this module
    from .manager import CacheManager
    from .options import RevalidateOptions

    if isinstance(target, RevalidateOptions):
        return target.merged(middlewares=[middleware])

    if isinstance(target, CacheManager):
        def subscribe(key: Any, listener: Any = None, **options: Any) -> Any:
            middlewares = list(options.pop("middlewares", ())) + [middleware]
            return target.subscribe(key, listener, middlewares=middlewares, **options)

        return subscribe

    raise TypeError(
        f"with_middleware expects RevalidateOptions or CacheManager, got {type(target).__name__}"
    )
