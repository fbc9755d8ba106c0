"""
Idempotent provisioning of remote repositories and registries.

All three registry variants follow the same sequence: look the resource up;
if it is missing, create it; if creation reports that the resource already
exists (another caller won the race), look it up again and carry on.
"""

import logging
from typing import Any, Callable, Optional, TypeVar

from cloud_deploy.context import OperationContext, ensure_context
from cloud_deploy.error_utils import classify_sdk_error, is_already_exists_error

T = TypeVar("T")


def ensure_exists(
    resource: str,
    get: Callable[[], T],
    create: Callable[[], T],
    is_not_found: Callable[[Exception], bool],
    ctx: Optional[OperationContext] = None,
    **details: Any,
) -> T:
    """Return the remote resource, creating it first if it does not exist.

    Args:
        resource: Human-readable resource name for logs and errors (e.g. "ECR repository myapp")
        get: Fetches the resource; raises when it does not exist
        create: Creates the resource and returns it
        is_not_found: Tells whether an exception raised by get means "does not exist"
        ctx: Cancellation context, checked before each remote call
        **details: Identifying context attached to any raised error

    Raises:
        AuthenticationError, NotFoundError or TransientNetworkError for any failure other
        than not-found on lookup and already-exists on creation
    """
    ctx = ensure_context(ctx)
    ctx.check(f"lookup of {resource}")
    try:
        existing = get()
        logging.info(f"{resource} already exists")
        return existing
    except Exception as e:
        if not is_not_found(e):
            raise classify_sdk_error(f"lookup of {resource}", e, **details) from e

    ctx.check(f"creation of {resource}")
    logging.info(f"Creating {resource}")
    try:
        created = create()
    except Exception as e:
        if not is_already_exists_error(e):
            raise classify_sdk_error(f"creation of {resource}", e, **details) from e
        logging.info(f"{resource} was created concurrently, using the existing one")
    else:
        logging.info(f"Created {resource}")
        return created

    ctx.check(f"lookup of {resource}")
    try:
        return get()
    except Exception as e:
        raise classify_sdk_error(f"lookup of {resource}", e, **details) from e
