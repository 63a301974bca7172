"""Thread pool used to run webhook handlers with a bounded wait."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable

from structlog.contextvars import bind_contextvars, get_contextvars


_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="pr-handler")


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared thread pool and return a Future.

    The caller's contextvars (and therefore its structlog bindings) are
    copied into the worker.
    """

    context = copy_context()

    if trace_id is not None:
        existing_trace = context.run(lambda: get_contextvars().get("trace_id"))
        if existing_trace != trace_id:
            context.run(lambda: bind_contextvars(trace_id=trace_id))

    def runner() -> Any:
        return context.run(func, *args, **kwargs)

    return _executor.submit(runner)


def wait_for_result(future: Future, *, timeout: float) -> Any:
    """Wait at most *timeout* seconds for *future* and return its result.

    Raises ``TimeoutError`` when the wait expires. The worker is not
    interrupted; callers that must keep it from committing late work pass it
    a flag to check (see ``ReviewSyncEngine.handle_in_background``).
    """

    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        if future.done():
            raise
        raise TimeoutError(f"Handler did not finish within {timeout} seconds") from exc
