"""
Async wrappers for Docker SDK to prevent event loop blocking.

The official Docker SDK (docker-py) is synchronous. These wrappers use asyncio.to_thread()
to run blocking calls in a thread pool, keeping the asyncio event loop responsive
while many image checks run side by side.

Cancellation:
- The awaiting task can be cancelled at any call (the worker thread finishes on its own)
- engine_call() accepts a per-call deadline enforced with asyncio.wait_for()

Usage:
    from utils.async_docker import async_docker_call, engine_call

    # Generic wrapper
    info = await async_docker_call(client.info)

    # Wrapper that attaches operational context to failures
    container = await engine_call("inspect container", "nginx", client.containers.get, "nginx")
"""

import asyncio
from typing import Callable, TypeVar, List, Optional

from updates.errors import EngineCallError, UpdaterError

# Type variable for generic return types
T = TypeVar('T')


async def async_docker_call(sync_fn: Callable[..., T], *args, **kwargs) -> T:
    """
    Execute a synchronous Docker SDK call in a thread pool.

    Uses asyncio.to_thread() which delegates to the default ThreadPoolExecutor.
    No new connections are created; the caller's DockerClient is reused, and
    docker-py's connection pool tolerates concurrent use from several threads.

    Args:
        sync_fn: Synchronous function to call (e.g., client.info, container.start)
        *args: Positional arguments to pass to sync_fn
        **kwargs: Keyword arguments to pass to sync_fn

    Returns:
        Result from the synchronous function

    Example:
        containers = await async_docker_call(client.containers.list, all=True)
        await async_docker_call(container.stop, timeout=30)
    """
    return await asyncio.to_thread(sync_fn, *args, **kwargs)


async def engine_call(
    operation: str,
    target: str,
    sync_fn: Callable[..., T],
    *args,
    deadline: Optional[float] = None,
    **kwargs
) -> T:
    """
    Run a Docker SDK call off the event loop and wrap failures in EngineCallError.

    Args:
        operation: Human readable operation name ("stop container", "pull image")
        target: Container name/ID or image reference the call acts on
        sync_fn: Synchronous SDK function
        deadline: Optional timeout in seconds for this single call
        *args, **kwargs: Passed through to sync_fn

    Raises:
        EngineCallError: If the call fails or exceeds its deadline
    """
    try:
        if deadline is None:
            return await async_docker_call(sync_fn, *args, **kwargs)
        try:
            return await asyncio.wait_for(async_docker_call(sync_fn, *args, **kwargs), timeout=deadline)
        except asyncio.TimeoutError:
            raise EngineCallError(operation, target, TimeoutError(f"timed out after {deadline}s"))
    except UpdaterError:
        raise
    except Exception as e:
        raise EngineCallError(operation, target, e) from e


async def async_containers_list(client, **kwargs) -> List:
    """
    List containers asynchronously.

    Defaults ignore_removed=True to skip ghost containers that appear in
    Docker's list endpoint but 404 on inspect. Without this, a single ghost
    container crashes the entire list operation.

    Args:
        client: Docker client instance
        **kwargs: Arguments to pass to containers.list() (e.g., all=True)

    Returns:
        List of Container objects
    """
    kwargs.setdefault('ignore_removed', True)
    return await engine_call("list containers", "*", client.containers.list, **kwargs)


async def async_client_ping(client) -> bool:
    """Ping Docker daemon asynchronously."""
    return await async_docker_call(client.ping)
