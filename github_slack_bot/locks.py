"""Per-key mutual exclusion with first-come, first-served hand-off."""

from __future__ import annotations

import threading
import time
from collections import deque
from contextlib import contextmanager
from typing import Any, Callable, Deque, Dict, Generator, Hashable, TypeVar

T = TypeVar("T")


class _KeyState:
    __slots__ = ("held", "waiters")

    def __init__(self) -> None:
        self.held = False
        self.waiters: Deque[threading.Event] = deque()


class KeyedLock:
    """Serialize work per key while letting unrelated keys run concurrently.

    Waiters for a key are queued explicitly and ownership is handed directly
    to the oldest waiter on release, so execution order for a key matches
    acquisition order. State for a key is discarded as soon as nobody holds
    or waits for it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: Dict[Hashable, _KeyState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def waiters(self, key: Hashable) -> int:
        """Return how many callers are queued behind the holder of *key*."""

        with self._lock:
            state = self._states.get(key)
            return len(state.waiters) if state else 0

    def locked(self, key: Hashable) -> bool:
        with self._lock:
            state = self._states.get(key)
            return bool(state and state.held)

    def acquire(self, key: Hashable, timeout: float | None = None) -> None:
        """Block until *key* is owned by the caller.

        Raises ``TimeoutError`` when *timeout* elapses first; the caller's
        place in the queue is given up in that case.
        """

        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = self._states[key] = _KeyState()
            if not state.held:
                state.held = True
                return
            turn = threading.Event()
            state.waiters.append(turn)

        deadline = None if timeout is None else time.monotonic() + timeout
        remaining = timeout
        while not turn.wait(remaining):
            remaining = deadline - time.monotonic()
            if remaining > 0:
                continue
            with self._lock:
                if turn.is_set():
                    # ownership arrived while the timeout fired
                    return
                state.waiters.remove(turn)
            raise TimeoutError(f"Timed out waiting for lock on {key!r}")

    def release(self, key: Hashable) -> None:
        with self._lock:
            state = self._states.get(key)
            if state is None or not state.held:
                raise RuntimeError(f"Lock for {key!r} is not held")
            if state.waiters:
                state.waiters.popleft().set()
            else:
                del self._states[key]

    @contextmanager
    def hold(self, key: Hashable, timeout: float | None = None) -> Generator[None, None, None]:
        """Context manager form of :meth:`acquire` / :meth:`release`."""

        self.acquire(key, timeout=timeout)
        try:
            yield
        finally:
            self.release(key)

    def run(
        self,
        key: Hashable,
        func: Callable[..., T],
        /,
        *args: Any,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run *func* while holding *key*; the lock is released even if it raises."""

        with self.hold(key, timeout=timeout):
            return func(*args, **kwargs)
