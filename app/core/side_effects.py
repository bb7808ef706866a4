# app/core/side_effects.py
"""
Fire-and-forget dispatch for notifications and penalty detection.

Side effects run after the primary transaction has committed. Inside a
request they are queued on FastAPI's BackgroundTasks; outside a request they
run inline. Either way a failure is logged and swallowed.
"""
import logging
from typing import Callable, Optional

from fastapi import BackgroundTasks

logger = logging.getLogger(__name__)


def _guarded(func: Callable, *args, **kwargs) -> None:
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception(f"Side effect {getattr(func, '__name__', func)} failed")


def dispatch(background_tasks: Optional[BackgroundTasks], func: Callable, *args, **kwargs) -> None:
    if background_tasks is not None:
        background_tasks.add_task(_guarded, func, *args, **kwargs)
    else:
        _guarded(func, *args, **kwargs)
