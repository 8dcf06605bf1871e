"""Retry policy for remote calls."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from cloud_provisioner.core.errors import RemoteTransientError

if TYPE_CHECKING:
    from collections.abc import Callable

    from cloud_provisioner.engine.settings import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retrying(policy: RetryPolicy) -> Retrying:
    """Build a tenacity controller: backoff on transient errors only.

    The last exception is re-raised once attempts are exhausted.
    """
    return Retrying(
        retry=retry_if_exception_type(RemoteTransientError),
        wait=wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.multiplier,
            max=policy.max_delay,
        ),
        stop=stop_after_attempt(policy.max_attempts),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def call_with_retry(policy: RetryPolicy, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return retrying(policy)(fn, *args, **kwargs)
