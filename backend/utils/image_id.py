"""
Image ID Normalization Utilities

Docker image IDs come in multiple formats:
- Full SHA256: "sha256:abc123def456..." (71 chars)
- Short ID: "abc123def456" (12 chars)

Content hashes are compared in full; the short form is only for display.
"""

IMAGE_ID_PREFIX = 'sha256:'


def normalize_image_id(image_id: str) -> str:
    """
    Normalize image ID to 12-char short format without sha256: prefix.

    Examples:
        >>> normalize_image_id("sha256:abc123def456789")
        'abc123def456'
        >>> normalize_image_id("abc123def456789012345")
        'abc123def456'
    """
    if not image_id:
        return ''
    return image_id.replace(IMAGE_ID_PREFIX, '')[:12]


def is_image_id(reference: str) -> bool:
    """True when the reference is a bare content ID rather than a repository reference."""
    return reference.startswith(IMAGE_ID_PREFIX)
