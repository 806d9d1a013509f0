"""
Action declarations.

Services mark their public operations with :func:`action`. The broker
collects them at registration time and uses ``cache_keys`` to decide
whether (and on which parameters) a result may be cached.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ActionSpec:
    """Name and cache declaration of one service action."""

    name: str
    cache_keys: tuple[str, ...] | None = None

    @property
    def cacheable(self) -> bool:
        return self.cache_keys is not None


def action(name: str | None = None, cache_keys: Iterable[str] | None = None) -> Callable:
    """
    Declare a coroutine method as a broker action.

    Args:
        name: Action name (defaults to the method name)
        cache_keys: Request parameters the cached result depends on, in key
                    order. None means the action is never cached.

    Example:
        @action(name="get", cache_keys=["id"])
        async def get(self, ctx):
            ...
    """

    def decorator(func: Callable) -> Callable:
        func.__action_spec__ = ActionSpec(
            name=name or func.__name__,
            cache_keys=tuple(cache_keys) if cache_keys is not None else None,
        )
        return func

    return decorator


def collect_actions(service: Any) -> dict[str, tuple[ActionSpec, Callable]]:
    """Return ``{action name: (spec, bound handler)}`` for a service instance."""
    actions: dict[str, tuple[ActionSpec, Callable]] = {}
    for attr in dir(type(service)):
        member = getattr(type(service), attr, None)
        spec = getattr(member, "__action_spec__", None)
        if isinstance(spec, ActionSpec):
            actions[spec.name] = (spec, getattr(service, attr))
    return actions
