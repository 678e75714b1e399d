import inspect
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


async def invoke_callback(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    """Call a sync or async streaming callback. A None callback is a no-op."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


async def invoke_error_callback(callback: Optional[Callable[..., Any]], error: BaseException) -> None:
    # on_error runs while a failure is already being reported; it must not raise
    try:
        await invoke_callback(callback, error)
    except Exception as e:
        logger.warning("on_error callback failed: %s", e)
