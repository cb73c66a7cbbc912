"""
Reactive Store and Derived Nodes
================================

The reactive primitives the form engine is built on.

- ``Store``: an observable value cell. Updates go through ``set_state`` with an
  updater function and are pushed to subscribers.
- ``Derived``: a node computed from one or more upstream stores (or other
  derived nodes). On each recomputation it receives the previous dependency
  snapshot, the current dependency values and its own previous output, so it
  can hand back the *same* objects when nothing relevant changed.
- ``batch()``: defers notification and derived recomputation until the
  outermost batch exits.

Propagation:
    store.set_state → mark store dirty → (outermost batch exits) →
    topologically sort all mounted dependents → recompute each once →
    notify subscribers

Reading ``state`` always pulls: a derived node recomputes on read when any
dependency changed since its last run, so reads inside a batch are current.
Unmounted nodes are only ever pulled and never notify subscribers.

Example:
    count = Store(1)
    doubled = Derived([count], lambda prev_dep_vals, curr_dep_vals, prev_val: curr_dep_vals[0] * 2)
    doubled.mount()

    with batch():
        count.set_state(lambda prev: prev + 1)
        count.set_state(lambda prev: prev + 1)
    # doubled recomputed once: 6
"""

import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, Set, TypeVar

import numpy as np

from .types import CircularDependencyError

T = TypeVar("T")


# ============================================================================
# CHANGE EVENTS
# ============================================================================


@dataclass(frozen=True, slots=True)
class Change:
    """Immutable change event delivered to subscribers."""

    node: Any
    old_value: Any
    new_value: Any
    timestamp: float

    def __repr__(self) -> str:
        return f"Change({type(self.node).__name__}: {self.old_value!r} → {self.new_value!r})"


def values_equal(a: Any, b: Any) -> bool:
    """Equality that tolerates numpy arrays and types with odd ``__eq__``."""
    if a is b:
        return True
    try:
        if isinstance(a, np.ndarray) or isinstance(b, np.ndarray):
            if type(a) != type(b):
                return False
            return np.array_equal(a, b)
        return bool(a == b)
    except (ValueError, TypeError):
        return False


# ============================================================================
# GRAPH TOPOLOGY
# ============================================================================


class _DependencyGraph:
    """Edges from an upstream node to the derived nodes that read it."""

    def __init__(self):
        self._forward: Dict[Any, Set[Any]] = defaultdict(set)
        self._reverse: Dict[Any, Set[Any]] = defaultdict(set)

    def add_edge(self, source: Any, dependent: Any) -> None:
        if dependent not in self._forward[source]:
            self._forward[source].add(dependent)
            self._reverse[dependent].add(source)

    def remove_edge(self, source: Any, dependent: Any) -> None:
        if dependent in self._forward.get(source, ()):
            self._forward[source].discard(dependent)
            self._reverse[dependent].discard(source)
            if not self._forward[source]:
                del self._forward[source]
            if not self._reverse[dependent]:
                del self._reverse[dependent]

    def get_all_dependents(self, node: Any) -> Set[Any]:
        """Get all transitive dependents of a node."""
        affected = set()
        to_visit = {node}

        while to_visit:
            next_level = set()
            for current in to_visit:
                for dep in self._forward.get(current, ()):
                    if dep not in affected:
                        affected.add(dep)
                        next_level.add(dep)
            to_visit = next_level

        return affected

    def topological_sort(self, nodes: Set[Any]) -> List[Any]:
        """Sort nodes so that every node comes after the nodes it reads."""
        if not nodes:
            return []

        in_degree = {}
        for node in nodes:
            in_degree[node] = sum(
                1 for dep in self._reverse.get(node, ()) if dep in nodes
            )

        # Seed in creation order so sibling nodes recompute deterministically
        queue = deque(
            sorted((n for n in nodes if in_degree[n] == 0), key=_creation_order)
        )
        result = []

        while queue:
            current = queue.popleft()
            result.append(current)

            for dependent in sorted(
                self._forward.get(current, ()), key=_creation_order
            ):
                if dependent in nodes:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        queue.append(dependent)

        return result


def _creation_order(node: Any) -> int:
    return getattr(node, "_order", 0)


_graph = _DependencyGraph()
_node_counter = 0


def _next_order() -> int:
    global _node_counter
    _node_counter += 1
    return _node_counter


# ============================================================================
# BATCHING
# ============================================================================


class _BatchState(threading.local):
    def __init__(self):
        self.depth = 0
        self.pending: Dict[Any, Any] = {}
        self.flushing = False


_batch_state = _BatchState()


class BatchContext:
    """Defers flushing of every store written inside the ``with`` block."""

    def __enter__(self):
        _batch_state.depth += 1
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _batch_state.depth -= 1
        if _batch_state.depth == 0:
            _flush()
        return False


def batch() -> BatchContext:
    """
    Create a batch context for grouped updates.

    Nested batches are merged into the outermost one. Subscribers observe a
    single transition per store, from its value before the batch to its value
    after it.

    Example:
        with batch():
            values.set_state(...)
            meta.set_state(...)
        # derived nodes recompute once, subscribers are notified once
    """
    return BatchContext()


def _reset_graph() -> None:
    """Drop all graph edges and batch bookkeeping (test isolation)."""
    global _graph
    _graph = _DependencyGraph()
    _batch_state.depth = 0
    _batch_state.pending = {}
    _batch_state.flushing = False


def _mark_dirty(store: "Store", old_value: Any) -> None:
    # Keep the value from before the first write of this batch
    if store not in _batch_state.pending:
        _batch_state.pending[store] = old_value


def _flush() -> None:
    """Recompute mounted dependents of dirty stores, then notify."""
    if _batch_state.flushing:
        return

    _batch_state.flushing = True
    try:
        while _batch_state.pending:
            pending = _batch_state.pending
            _batch_state.pending = {}

            affected: Set[Any] = set()
            for store in pending:
                affected |= _graph.get_all_dependents(store)

            changes = []
            for store, old_value in pending.items():
                if old_value is not store.state:
                    changes.append(
                        Change(store, old_value, store.state, time.time())
                    )

            for node in _graph.topological_sort(affected):
                # Reads inside the batch may already have pulled the node
                new_value = node.state
                old_value = node._notified_state
                if new_value is not old_value:
                    node._notified_state = new_value
                    changes.append(Change(node, old_value, new_value, time.time()))

            for change in changes:
                change.node._notify(change)
    finally:
        _batch_state.flushing = False


# ============================================================================
# STORE
# ============================================================================


class _Node(Generic[T]):
    """Subscription bookkeeping shared by stores and derived nodes."""

    def __init__(self):
        self._listeners: List[Callable[[Change], None]] = []
        self._order = _next_order()

    def subscribe(self, listener: Callable[[Change], None]) -> Callable[[], None]:
        """Subscribe to changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: Change) -> None:
        for listener in list(self._listeners):
            listener(change)


class Store(_Node[T]):
    """
    Observable value cell.

    The store never mutates its value in place: ``set_state`` replaces it
    with whatever the updater returns. Returning the previous object unchanged
    is a no-op.
    """

    def __init__(self, initial_state: T):
        super().__init__()
        self.state: T = initial_state
        self.prev_state: T = initial_state
        self._version = 0

    def set_state(self, updater: Callable[[T], T]) -> None:
        old_value = self.state
        new_value = updater(old_value)
        if new_value is old_value:
            return

        self.prev_state = old_value
        self.state = new_value
        self._version += 1

        _mark_dirty(self, old_value)
        if _batch_state.depth == 0:
            _flush()

    def __repr__(self) -> str:
        return f"Store({self.state!r})"


# ============================================================================
# DERIVED
# ============================================================================


class Derived(_Node[T]):
    """
    Value computed from upstream nodes.

    ``fn`` is called as ``fn(prev_dep_vals, curr_dep_vals, prev_val)``:

    - ``prev_dep_vals``: dependency values seen on the previous run
      (``None`` on the first run)
    - ``curr_dep_vals``: current dependency values, in ``deps`` order
    - ``prev_val``: this node's previous output (``None`` on the first run)
    """

    def __init__(self, deps: Sequence[_Node], fn: Callable[..., T]):
        super().__init__()
        self._deps = list(deps)
        self._fn = fn
        self._prev_dep_vals: Optional[List[Any]] = None
        self._seen_versions: Optional[List[int]] = None
        self._computing = False
        self._mount_count = 0
        self._upstream_unmounts: List[Callable[[], None]] = []
        self._version = 0
        self._state: T = None  # type: ignore[assignment]
        self._recompute()
        self._notified_state = self._state

    @property
    def state(self) -> T:
        if self._is_stale():
            self._recompute()
        return self._state

    @property
    def is_mounted(self) -> bool:
        return self._mount_count > 0

    def _dep_versions(self) -> List[int]:
        return [dep._version for dep in self._deps]

    def _is_stale(self) -> bool:
        for dep in self._deps:
            if isinstance(dep, Derived):
                # Pull upstream first so its version reflects its sources
                dep.state
        return self._dep_versions() != self._seen_versions

    def _recompute(self) -> None:
        if self._computing:
            raise CircularDependencyError(
                f"Circular dependency detected while computing {self!r}"
            )

        self._computing = True
        try:
            curr_dep_vals = [dep.state for dep in self._deps]
            new_value = self._fn(
                prev_dep_vals=self._prev_dep_vals,
                curr_dep_vals=curr_dep_vals,
                prev_val=self._state,
            )
        finally:
            self._computing = False

        self._prev_dep_vals = curr_dep_vals
        self._seen_versions = self._dep_versions()
        if new_value is not self._state:
            self._state = new_value
            self._version += 1

    def mount(self) -> Callable[[], None]:
        """
        Attach this node to the propagation graph.

        While mounted the node is recomputed eagerly whenever an upstream store
        flushes. Returns a cleanup function that detaches it again.
        """
        if self._mount_count == 0:
            # Upstream derived nodes must propagate too
            self._upstream_unmounts = [
                dep.mount() for dep in self._deps if isinstance(dep, Derived)
            ]
            for dep in self._deps:
                _graph.add_edge(dep, self)
            if self._is_stale():
                self._recompute()
            self._notified_state = self._state
        self._mount_count += 1

        unmounted = False

        def unmount():
            nonlocal unmounted
            if unmounted:
                return
            unmounted = True
            self._mount_count -= 1
            if self._mount_count == 0:
                for dep in self._deps:
                    _graph.remove_edge(dep, self)
                for upstream_unmount in self._upstream_unmounts:
                    upstream_unmount()
                self._upstream_unmounts = []

        return unmount

    def __repr__(self) -> str:
        name = getattr(self._fn, "__name__", "fn")
        return f"Derived({name}, deps={len(self._deps)})"


__all__ = [
    "Store",
    "Derived",
    "Change",
    "BatchContext",
    "batch",
    "values_equal",
]
