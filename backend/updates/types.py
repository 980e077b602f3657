"""
Shared types for the update pipeline.

This module contains the dataclasses passed between discovery, detection,
reconciliation and replacement so every stage speaks the same vocabulary.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Callable, Any, Dict, List, Tuple

from utils.container_id import normalize_container_id, normalize_container_name


@dataclass(frozen=True)
class ContainerRecord:
    """
    Read-only snapshot of a container taken at discovery time.

    The image is the reference as recorded on the container (tag, digest,
    bare image ID or the anonymous placeholder), not the resolved form.
    """
    id: str  # SHORT ID (12 chars)
    name: str
    image: str
    labels: Dict[str, str] = field(default_factory=dict)
    state: str = ''

    @classmethod
    def from_container(cls, container) -> 'ContainerRecord':
        """Build a record from a docker-py Container object."""
        attrs = container.attrs or {}
        config = attrs.get('Config') or {}
        state = attrs.get('State') or {}
        return cls(
            id=normalize_container_id(container.id),
            name=normalize_container_name(container.name or attrs.get('Name', '')),
            image=config.get('Image', ''),
            labels=dict(config.get('Labels') or {}),
            state=state.get('Status', '') if isinstance(state, dict) else str(state),
        )

    def has_label(self, key: str, value: Optional[str] = None) -> bool:
        if key not in self.labels:
            return False
        return value is None or self.labels[key] == value


@dataclass(frozen=True)
class ImageCheckResult:
    """
    Outcome of checking one unique image against its registry.

    `updated` is only ever True when both hashes were read without error
    and they differ.
    """
    image: str
    local_hash: str = ''
    remote_hash: str = ''
    updated: bool = False
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def from_hashes(cls, image: str, local_hash: str, remote_hash: str) -> 'ImageCheckResult':
        return cls(
            image=image,
            local_hash=local_hash,
            remote_hash=remote_hash,
            updated=local_hash != remote_hash,
        )

    @classmethod
    def failure(cls, image: str, error: str, local_hash: str = '') -> 'ImageCheckResult':
        return cls(image=image, local_hash=local_hash, error=error)


@dataclass
class BatchSummary:
    """Counts for one batch. updated + up_to_date + failed == total_images."""
    total_containers: int = 0
    total_images: int = 0
    updated: int = 0
    up_to_date: int = 0
    failed: int = 0
    duration: float = 0.0  # seconds


@dataclass
class BatchCheckResult:
    """
    Aggregate result of one detection batch.

    Owned by the caller of a single batch. `resolved_images` maps each
    container's short ID to the resolved reference it was checked under,
    containers whose image could not be resolved are absent from it.
    `first_error` is the first per-image failure encountered, if any; the
    rest of the result is fully populated regardless.
    """
    containers: List[ContainerRecord] = field(default_factory=list)
    images: List[ImageCheckResult] = field(default_factory=list)
    summary: BatchSummary = field(default_factory=BatchSummary)
    resolved_images: Dict[str, str] = field(default_factory=dict)
    first_error: Optional[BaseException] = None

    def update_mapping(self) -> Dict[str, str]:
        """
        Image reference -> confirmed-updated image reference.

        The target reference is the same name: after the pull it points at
        the new content.
        """
        return {
            image_result.image: image_result.image
            for image_result in self.images
            if image_result.updated and not image_result.failed
        }

    def containers_to_update(self) -> List[Tuple[ContainerRecord, str]]:
        """Containers whose resolved image has a confirmed update, paired with the new reference."""
        mapping = self.update_mapping()
        selected = []
        for container in self.containers:
            resolved = self.resolved_images.get(container.id)
            if resolved in mapping:
                selected.append((container, mapping[resolved]))
        return selected


@dataclass
class ReconciledCreateSpec:
    """
    Minimal configuration needed to recreate a container on a new image.

    All three dicts use the Docker Engine API's PascalCase keys. `config`
    holds only values the new image does not already supply.
    """
    name: str
    image: str
    config: Dict[str, Any] = field(default_factory=dict)
    host_config: Dict[str, Any] = field(default_factory=dict)
    networking_config: Dict[str, Any] = field(default_factory=dict)

    @property
    def network_mode(self) -> str:
        return self.host_config.get('NetworkMode') or ''

    @property
    def endpoints(self) -> Dict[str, Dict[str, Any]]:
        return self.networking_config.get('EndpointsConfig') or {}

    @property
    def uses_host_network(self) -> bool:
        return self.network_mode == 'host'

    def single_endpoint_config(self) -> Optional[Dict[str, Any]]:
        """Networking config restricted to the first endpoint, or None without endpoints."""
        if not self.endpoints:
            return None
        network_name, endpoint = next(iter(self.endpoints.items()))
        return {'EndpointsConfig': {network_name: endpoint}}

    def create_kwargs(self, networking_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Keyword arguments for docker-py's low-level `api.create_container`.

        HostConfig is passed through untouched. Cleared values become None so
        the engine falls back to the image defaults.

        docker-py derives AttachStdin/AttachStdout/AttachStderr and StdinOnce
        from `detach` and `stdin_open`, so `detach` is set from the old
        container's attach flags. Shell, OnBuild and ArgsEscaped are image
        build settings and come from the new image.
        """
        config = self.config
        shares_namespace = self.network_mode.startswith('container:')

        ports = []
        for port in config.get('ExposedPorts') or {}:
            number, _, proto = port.partition('/')
            ports.append((number, proto or 'tcp'))

        attached = any(config.get(key) for key in ('AttachStdin', 'AttachStdout', 'AttachStderr'))

        return {
            'image': self.image,
            'name': self.name,
            'hostname': None if shares_namespace else (config.get('Hostname') or None),
            'domainname': config.get('Domainname') or None,
            'user': config.get('User') or None,
            'environment': config.get('Env') or None,
            'command': config.get('Cmd'),
            'entrypoint': config.get('Entrypoint'),
            'working_dir': config.get('WorkingDir') or None,
            'labels': config.get('Labels') or None,
            'ports': ports or None,
            'volumes': list(config.get('Volumes') or {}) or None,
            'healthcheck': config.get('Healthcheck'),
            'stop_signal': config.get('StopSignal') or None,
            'stop_timeout': config.get('StopTimeout'),
            'mac_address': None if shares_namespace else (config.get('MacAddress') or None),
            'network_disabled': config.get('NetworkDisabled', False),
            'detach': not attached,
            'tty': config.get('Tty', False),
            'stdin_open': config.get('OpenStdin', False),
            'host_config': self.host_config,
            'networking_config': networking_config,
            # the old Env already carries any injected proxy variables
            'use_config_proxy': False,
        }


@dataclass
class UpdateResult:
    """
    Result of replacing one container.

    Returned by ReplacementEngine and SelfReplacementProtocol so the batch
    report can list what happened to every selected container.
    """
    container_name: str
    success: bool
    container_id: Optional[str] = None  # SHORT ID of the replaced container
    new_container_id: Optional[str] = None  # SHORT ID after recreation
    error_message: Optional[str] = None
    rollback_performed: bool = False
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def success_result(cls, container: ContainerRecord, new_container_id: str) -> 'UpdateResult':
        """Create a successful result."""
        return cls(
            container_name=container.name,
            success=True,
            container_id=container.id,
            new_container_id=normalize_container_id(new_container_id),
        )

    @classmethod
    def failure_result(
        cls,
        container: ContainerRecord,
        error_message: str,
        rollback_performed: bool = False
    ) -> 'UpdateResult':
        """Create a failure result."""
        return cls(
            container_name=container.name,
            success=False,
            container_id=container.id,
            error_message=error_message,
            rollback_performed=rollback_performed,
        )


@dataclass
class UpdateReport:
    """Outcome of applying one batch's updates."""
    results: List[UpdateResult] = field(default_factory=list)
    skipped: bool = False

    @property
    def succeeded(self) -> List[UpdateResult]:
        return [r for r in self.results if r.success]

    @property
    def failed(self) -> List[UpdateResult]:
        return [r for r in self.results if not r.success]


# Type alias for the per-image progress observer
# Signature: def observer(result: ImageCheckResult) -> None
ProgressCallback = Callable[[ImageCheckResult], None]
