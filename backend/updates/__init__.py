"""
Updates Module

Image update detection and container replacement.

Architecture:
- ReferenceResolver: Maps bare image IDs and <none>:<none> to pullable references
- UpdateDetector: Deduplicated, bounded-concurrency pull-and-compare per image
- BatchAggregator: Thread-safe collection point for per-image results
- ConfigReconciler: Minimal create spec for recreating a container on a new image
- ReplacementEngine: Stop/remove/create/start for ordinary containers
- SelfReplacementProtocol: Zero-downtime replacement of the updater's own container
- UpdateExecutor: Applies a detection batch through the two replacement paths

Submodules are imported directly (e.g. `from updates.update_detector import
UpdateDetector`); utils.async_docker depends on updates.errors, so this package
must not import its submodules eagerly.
"""
