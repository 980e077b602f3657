"""
Container ID Normalization Utilities

The update pipeline always uses 12-char short container IDs for logging,
results and network alias matching. Docker returns 64-char IDs from inspect.
"""

CONTAINER_ID_SHORT_LENGTH = 12


def normalize_container_id(container_id: str) -> str:
    """
    Normalize container ID to 12-char short format.

    Examples:
        >>> normalize_container_id("abc123def456")
        'abc123def456'
        >>> normalize_container_id("abc123def456789012345678901234567890")
        'abc123def456'
    """
    return container_id[:CONTAINER_ID_SHORT_LENGTH]


def normalize_container_name(name: str) -> str:
    """Strip the leading slash Docker puts on container names ("/nginx" -> "nginx")."""
    return name[1:] if name.startswith('/') else name
