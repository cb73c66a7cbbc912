"""
Path helpers for nested form values, plus small helpers for results that may
or may not be awaitable.

Paths use dot and bracket segments: ``"items[2].name"`` addresses
``values["items"][2]["name"]``. Bracketed segments are list indices, dotted
segments are mapping keys.

Writes never mutate their input. ``set_by`` and ``delete_by`` copy only the
containers along the path and share everything else with the original.
"""

import asyncio
import inspect
import re
from typing import (
    Any,
    Awaitable,
    Callable,
    Coroutine,
    Iterable,
    List,
    Mapping,
    Optional,
    TypeVar,
    Union,
)

from .types import FormError

T = TypeVar("T")

_SEGMENT = re.compile(r"\[(\d+)\]|([^.\[\]]+)")


def make_path_array(path: Union[str, int, List[Any]]) -> List[Union[str, int]]:
    """Split a path into segments: ``"a.b[0]"`` → ``["a", "b", 0]``."""
    if isinstance(path, list):
        return list(path)
    if isinstance(path, int):
        return [path]

    segments: List[Union[str, int]] = []
    for index, key in _SEGMENT.findall(path):
        segments.append(int(index) if index else key)
    return segments


def functional_update(updater: Any, value: Any) -> Any:
    """Apply ``updater`` if it is callable, otherwise it is the new value."""
    if callable(updater):
        return updater(value)
    return updater


def get_by(obj: Any, path: Union[str, int, List[Any]]) -> Any:
    """Read the value at ``path``; missing segments yield ``None``."""
    current = obj
    for segment in make_path_array(path):
        if current is None:
            return None
        if isinstance(segment, int) and isinstance(current, (list, tuple)):
            current = current[segment] if -len(current) <= segment < len(current) else None
        elif isinstance(current, Mapping):
            current = current.get(segment)
        else:
            current = getattr(current, str(segment), None)
    return current


def set_by(obj: Any, path: Union[str, int, List[Any]], updater: Any) -> Any:
    """Return a copy of ``obj`` with the value at ``path`` updated."""
    segments = make_path_array(path)

    def do_set(parent: Any, remaining: List[Union[str, int]]) -> Any:
        if not remaining:
            return functional_update(updater, parent)

        key, rest = remaining[0], remaining[1:]

        if isinstance(key, int) and (parent is None or isinstance(parent, list)):
            items = list(parent or [])
            if key >= len(items):
                items.extend([None] * (key - len(items) + 1))
            items[key] = do_set(items[key], rest)
            return items

        if parent is None:
            parent = {}
        if isinstance(parent, list):
            # Dotted numeric key into a list: "items.0"
            items = list(parent)
            index = int(key)
            items[index] = do_set(items[index], rest)
            return items

        copy = dict(parent)
        copy[key] = do_set(parent.get(key), rest)
        return copy

    return do_set(obj, segments)


def delete_by(obj: Any, path: Union[str, int, List[Any]]) -> Any:
    """Return a copy of ``obj`` without the value at ``path``."""
    segments = make_path_array(path)

    def do_delete(parent: Any, remaining: List[Union[str, int]]) -> Any:
        if parent is None:
            return None

        key, rest = remaining[0], remaining[1:]

        if isinstance(parent, list):
            if not isinstance(key, int) or not 0 <= key < len(parent):
                return parent
            items = list(parent)
            if rest:
                items[key] = do_delete(items[key], rest)
            else:
                del items[key]
            return items

        if not isinstance(parent, Mapping) or key not in parent:
            return parent

        copy = dict(parent)
        if rest:
            copy[key] = do_delete(parent[key], rest)
        else:
            del copy[key]
        return copy

    if not segments:
        return obj
    return do_delete(obj, segments)


def array_item_path(field: str, index: int) -> str:
    return f"{field}[{index}]"


def flatten_errors(values: Iterable[Any]) -> List[Any]:
    """Concatenate error values, dropping ``None`` and splicing lists in."""
    result: List[Any] = []
    for value in values:
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            result.extend(value)
        else:
            result.append(value)
    return result


def schedule(coro: Coroutine[Any, Any, T]) -> "asyncio.Task[T]":
    """
    Start ``coro`` as a task on the running event loop.

    Async validation and coroutine listeners need a loop: calling an entry
    point that schedules them from plain synchronous code raises
    ``FormError``.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        raise FormError(
            "Async validation or listeners need a running event loop; "
            "call this from inside a coroutine"
        ) from None
    return asyncio.ensure_future(coro)


def gather_errors(results: List[Any]) -> Union[List[Any], Awaitable[List[Any]]]:
    """
    Combine per-field validation results into one flat error list.

    If any result is still pending the combination is scheduled as a task and
    the task is returned instead.
    """
    if not any(inspect.isawaitable(result) for result in results):
        return flatten_errors(results)

    async def collect() -> List[Any]:
        settled = [await settle(result) for result in results]
        return flatten_errors(settled)

    return schedule(collect())


async def settle(result: Any) -> Any:
    """Await ``result`` if it is awaitable, otherwise return it."""
    if inspect.isawaitable(result):
        return await result
    return result


def call_listener(
    listener: Callable[..., Any], *args: Any
) -> Optional["asyncio.Task[Any]"]:
    """Run a user listener. Coroutine listeners are scheduled; their task is returned."""
    result = listener(*args)
    if inspect.iscoroutine(result):
        return schedule(result)
    return None


__all__ = [
    "make_path_array",
    "functional_update",
    "get_by",
    "set_by",
    "delete_by",
    "array_item_path",
    "flatten_errors",
    "schedule",
    "gather_errors",
    "settle",
    "call_listener",
]
