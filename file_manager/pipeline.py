"""
Ordered request interceptors wrapped around every application command.

A behavior is called as behavior(name, request, call_next) and must return
call_next()'s result (or raise). The first behavior in the list is the
outermost wrapper.
"""
import functools
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .exceptions import (
    DuplicateContentError,
    FileManagerError,
    NotFoundError,
    OperationCancelledError,
    SecurityError,
)

Behavior = Callable[[str, Dict[str, Any], Callable[[], Any]], Any]


def logging_behavior(name: str, request: Dict[str, Any], call_next: Callable[[], Any]) -> Any:
    logging.info(f"Handling {name} {request}")
    start = time.perf_counter()
    result = call_next()
    logging.info(f"Handled {name} in {time.perf_counter() - start:.3f}s")
    return result


def error_logging_behavior(name: str, request: Dict[str, Any], call_next: Callable[[], Any]) -> Any:
    """Logs failures at a level matching their kind, then re-raises."""
    try:
        return call_next()
    except (SecurityError, NotFoundError, DuplicateContentError, OperationCancelledError) as e:
        logging.warning(f"{name} rejected: {e}")
        raise
    except FileManagerError as e:
        logging.error(f"{name} failed: {e} (request: {request})")
        raise
    except Exception:
        logging.exception(f"Unhandled error in {name} (request: {request})")
        raise


DEFAULT_BEHAVIORS: List[Behavior] = [logging_behavior, error_logging_behavior]


class RequestPipeline:
    def __init__(self, behaviors: Optional[Sequence[Behavior]] = None):
        self.behaviors = list(DEFAULT_BEHAVIORS if behaviors is None else behaviors)

    def send(self, name: str, request: Dict[str, Any], handler: Callable[[], Any]) -> Any:
        call = handler
        for behavior in reversed(self.behaviors):
            call = functools.partial(behavior, name, request, call)
        return call()
