"""Per-build lifecycle hooks and their dispatch."""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
from functools import partial
from typing import Any, Awaitable, Callable, List, Mapping, Optional, TypedDict

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException], Any]

# Runs coroutines returned by hooks, away from the build's own threads.
_hook_executor = concurrent.futures.ThreadPoolExecutor(thread_name_prefix="streambuild-hook")


class BuildHooks(TypedDict, total=False):
    """
    Callbacks a caller may register for a single build.

    None of them are required. Without build_success and build_failure there
    is no way to tell how a build ended, so most callers register both.
    """

    # Called with the duplex channel as soon as the build starts.
    build_stream: Callable[..., Any]
    # Called with the image digest and every layer digest of a finished build.
    build_success: Callable[[Optional[str], List[str]], Any]
    # Called with the error and the layers that completed before it.
    build_failure: Callable[[BaseException, List[str]], Any]
    # Directory builds only: may return a replacement for the channel the
    # context is written to.
    build_transform: Callable[..., Any]


def log_hook_error(error: BaseException) -> None:
    """Default error handler: hook failures are only logged."""
    logger.warning("Build hook raised: %s", error, exc_info=error)


def call_hook(
    hooks: Mapping[str, Any],
    name: str,
    handler: ErrorHandler,
    *args: Any,
) -> Any:
    """
    Calls a hook, if it has been registered for the build.

    Errors never leave this function: a hook raising is reported to handler,
    and so is a hook whose coroutine or future fails later on. Deferred
    results are not waited for.

    Returns:
        The hook's return value (a Future for coroutine hooks), or None if
        the hook is absent or raised.
    """
    hook = hooks.get(name)
    if hook is None:
        return None
    if not callable(hook):
        logger.warning("Ignoring non-callable %s hook: %r", name, hook)
        return None

    try:
        result = hook(*args)
    except Exception as e:
        logger.debug("Hook %s raised %r", name, e)
        _report(handler, e)
        return None

    if inspect.isawaitable(result) and not isinstance(result, asyncio.Future):
        result = _hook_executor.submit(asyncio.run, _await(result))

    if isinstance(result, (concurrent.futures.Future, asyncio.Future)):
        result.add_done_callback(partial(_report_outcome, handler, name))

    return result


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def _report_outcome(handler: ErrorHandler, name: str, future: Any) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if error is not None:
        logger.debug("Hook %s failed asynchronously with %r", name, error)
        _report(handler, error)


def _report(handler: ErrorHandler, error: BaseException) -> None:
    try:
        handler(error)
    except Exception:
        logger.exception("Error handler raised while handling %r", error)
