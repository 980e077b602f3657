"""
Container Discovery Module for WatchDucker
Selects the containers an update cycle works on
"""

import logging
from typing import Dict, List, Optional, Sequence

from docker import DockerClient

from config.settings import UpdaterConfig
from updates.types import ContainerRecord
from utils.async_docker import async_containers_list
from utils.container_id import normalize_container_name

logger = logging.getLogger(__name__)

UPDATE_LABEL_VALUE = 'true'


def label_filter(key: str, value: Optional[str] = None) -> Dict[str, str]:
    """Engine-side label filter: "key=value", or just "key" to match on presence."""
    return {'label': f"{key}={value}" if value else key}


class ContainerDiscovery:
    """
    Lists containers and turns them into ContainerRecord snapshots.

    Only running containers are returned unless include_stopped is set.
    Every call queries the engine again; nothing is cached between cycles.
    """

    def __init__(self, client: DockerClient, include_stopped: bool = False):
        self.client = client
        self.include_stopped = include_stopped

    async def _list(self, filters: Optional[Dict[str, str]] = None) -> List[ContainerRecord]:
        kwargs = {'all': self.include_stopped}
        if filters:
            kwargs['filters'] = filters
        containers = await async_containers_list(self.client, **kwargs)
        return [ContainerRecord.from_container(container) for container in containers]

    async def all(self) -> List[ContainerRecord]:
        return await self._list()

    async def by_name(self, names: Sequence[str]) -> List[ContainerRecord]:
        """Containers whose name exactly matches one of names (leading '/' ignored)."""
        wanted = {normalize_container_name(name) for name in names}
        records = [record for record in await self._list() if record.name in wanted]

        missing = wanted - {record.name for record in records}
        if missing:
            logger.warning(f"Containers not found: {', '.join(sorted(missing))}")
        return records

    async def by_label(self, key: str, value: Optional[str] = UPDATE_LABEL_VALUE) -> List[ContainerRecord]:
        """Containers carrying label key (with the given value, when one is given)."""
        return await self._list(label_filter(key, value))

    async def without_label(self, key: str, value: Optional[str] = UPDATE_LABEL_VALUE) -> List[ContainerRecord]:
        """Containers that do not carry label key=value."""
        return [record for record in await self._list() if not record.has_label(key, value)]

    async def for_config(self, config: UpdaterConfig) -> List[ContainerRecord]:
        """
        Apply the configured selection mode, then drop disabled containers.

        Priority: names > all > label_reversed > label.
        """
        mode = config.selection_mode
        if mode == 'names':
            records = await self.by_name(config.container_names)
        elif mode == 'all':
            records = await self.all()
        elif mode == 'label_reversed':
            records = await self.without_label(config.update_label)
        elif mode == 'label':
            records = await self.by_label(config.update_label)
        else:
            logger.warning("No container selection mode configured")
            return []

        disabled = set(config.disabled_containers)
        if disabled:
            excluded = [record.name for record in records if record.name in disabled]
            if excluded:
                logger.info(f"Excluding disabled containers: {', '.join(excluded)}")
            records = [record for record in records if record.name not in disabled]

        logger.debug(f"Discovered {len(records)} container(s) by {mode}")
        return records
