import logging
from typing import Callable, TypeVar

from .errors import TransientNetworkFailure

T = TypeVar('T')

logger = logging.getLogger(__name__)


def retry_once(fn: Callable[[], T], what: str) -> T:
    """Call fn, retrying a single time on TransientNetworkFailure.

    The second failure propagates to the caller.
    """
    try:
        return fn()
    except TransientNetworkFailure as e:
        logger.info(f"Transient failure during {what}, retrying once: {e}")
        return fn()
