"""
Container configuration reconciliation.

When a container is recreated on a new image, everything the old container
inherited from its image shows up in `docker inspect` as if the user had set
it. Copying that configuration verbatim pins the old image's defaults onto
the new container, and every further update piles more of them up. The
reconciler subtracts the new image's defaults so only real overrides are
passed to the engine.

Field rules (Config):
- WorkingDir, User: cleared when equal to the image default
- Hostname: cleared when the network namespace is shared (container:X),
  or when it is the old container's short ID (the engine's own default)
- Entrypoint: cleared when equal to the image default; Cmd is then cleared
  only if it also matches (the engine resolves the two together)
- Healthcheck: each of Test/Retries/Interval/Timeout/StartPeriod cleared
  independently when equal to the image value
- Env, Labels: entries identical to the image's are dropped
- Volumes: entries declared by the image are dropped
- ExposedPorts: ports exposed by the image are dropped, host-bound ports are
  always re-added

HostConfig: Links rewritten to "name:alias". Everything else passes through.
NetworkingConfig: per-endpoint IPAM/aliases/links, aliases equal to the old
short ID stripped.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from updates.types import ReconciledCreateSpec
from utils.container_id import normalize_container_id, normalize_container_name

logger = logging.getLogger(__name__)

HEALTHCHECK_FIELDS = ('Test', 'Retries', 'Interval', 'Timeout', 'StartPeriod')


def subtract_list(values: Optional[List[str]], defaults: Optional[List[str]]) -> List[str]:
    """Entries of values not present in defaults, order preserved."""
    default_set = set(defaults or [])
    return [value for value in values or [] if value not in default_set]


def subtract_mapping(values: Optional[Dict[str, Any]], defaults: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Key/value pairs of values that are absent from or differ in defaults."""
    defaults = defaults or {}
    return {
        key: value
        for key, value in (values or {}).items()
        if key not in defaults or defaults[key] != value
    }


def subtract_keys(values: Optional[Dict[str, Any]], defaults: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Entries of values whose key is not declared in defaults."""
    defaults = defaults or {}
    return {key: value for key, value in (values or {}).items() if key not in defaults}


def _same_list(left: Optional[List[str]], right: Optional[List[str]]) -> bool:
    # null and empty are the same to the engine
    return list(left or []) == list(right or [])


def rewrite_link(link: str) -> str:
    """
    Rewrite an inspected link to the create-time form.

    Inspect reports "/db:/web/database"; create expects "db:database".
    """
    if ':' not in link:
        return link.lstrip('/')
    name, _, alias_path = link.partition(':')
    alias = alias_path.rsplit('/', 1)[-1]
    return f"{name.lstrip('/')}:{alias}"


class ConfigReconciler:
    """Computes the minimal create spec for recreating a container on a new image."""

    def reconcile(
        self,
        container_attrs: Dict[str, Any],
        image_attrs: Dict[str, Any],
        new_image: str
    ) -> ReconciledCreateSpec:
        """
        Args:
            container_attrs: `docker inspect` of the running container
                (Id, Name, Config, HostConfig, NetworkSettings)
            image_attrs: `docker image inspect` of the target image
            new_image: Reference the replacement should be created from

        Returns:
            ReconciledCreateSpec. The inputs are not modified.
        """
        short_id = normalize_container_id(container_attrs.get('Id', ''))
        host_config = self.reconcile_host_config(container_attrs)
        config = self.reconcile_config(container_attrs, image_attrs, new_image)
        networking_config = self.reconcile_networking(container_attrs)

        spec = ReconciledCreateSpec(
            name=normalize_container_name(container_attrs.get('Name', '')),
            image=new_image,
            config=config,
            host_config=host_config,
            networking_config=networking_config,
        )
        logger.debug(
            f"Reconciled {spec.name} ({short_id}): {len(config.get('Env') or [])} env overrides, "
            f"{len(config.get('Labels') or {})} label overrides, {len(spec.endpoints)} network(s)"
        )
        return spec

    def reconcile_config(
        self,
        container_attrs: Dict[str, Any],
        image_attrs: Dict[str, Any],
        new_image: str
    ) -> Dict[str, Any]:
        config = copy.deepcopy(container_attrs.get('Config') or {})
        host_config = container_attrs.get('HostConfig') or {}
        image_config = (image_attrs or {}).get('Config') or {}
        short_id = normalize_container_id(container_attrs.get('Id', ''))

        if config.get('WorkingDir') == image_config.get('WorkingDir'):
            config['WorkingDir'] = ''

        if config.get('User') == image_config.get('User'):
            config['User'] = ''

        network_mode = host_config.get('NetworkMode') or ''
        if network_mode.startswith('container:'):
            config['Hostname'] = ''
        elif short_id and config.get('Hostname') == short_id:
            config['Hostname'] = ''

        if _same_list(config.get('Entrypoint'), image_config.get('Entrypoint')):
            config['Entrypoint'] = None
            if _same_list(config.get('Cmd'), image_config.get('Cmd')):
                config['Cmd'] = None

        config['Healthcheck'] = self._reconcile_healthcheck(
            config.get('Healthcheck'), image_config.get('Healthcheck')
        )

        config['Env'] = subtract_list(config.get('Env'), image_config.get('Env'))
        config['Labels'] = subtract_mapping(config.get('Labels'), image_config.get('Labels'))
        config['Volumes'] = subtract_keys(config.get('Volumes'), image_config.get('Volumes'))

        exposed = subtract_keys(config.get('ExposedPorts'), image_config.get('ExposedPorts'))
        for port in host_config.get('PortBindings') or {}:
            exposed[port] = {}
        config['ExposedPorts'] = exposed

        config['Image'] = new_image
        return config

    def _reconcile_healthcheck(
        self,
        healthcheck: Optional[Dict[str, Any]],
        image_healthcheck: Optional[Dict[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        if not healthcheck:
            return None
        if not image_healthcheck:
            return dict(healthcheck)

        reconciled = {}
        for key, value in healthcheck.items():
            if key in HEALTHCHECK_FIELDS:
                default = image_healthcheck.get(key)
                same = _same_list(value, default) if key == 'Test' else value == default
                if same:
                    continue
            reconciled[key] = value
        return reconciled or None

    def reconcile_host_config(self, container_attrs: Dict[str, Any]) -> Dict[str, Any]:
        host_config = copy.deepcopy(container_attrs.get('HostConfig') or {})
        if host_config.get('Links'):
            host_config['Links'] = [rewrite_link(link) for link in host_config['Links']]
        return host_config

    def reconcile_networking(self, container_attrs: Dict[str, Any]) -> Dict[str, Any]:
        """
        Endpoint settings for every attached network.

        Only user-configurable settings are kept (static IPs, aliases, links);
        runtime state like assigned IPs and endpoint IDs is dropped.
        """
        short_id = normalize_container_id(container_attrs.get('Id', ''))
        networks = (container_attrs.get('NetworkSettings') or {}).get('Networks') or {}

        endpoints = {}
        for network_name, network_data in networks.items():
            network_data = network_data or {}
            endpoint: Dict[str, Any] = {}

            ipam_config_raw = network_data.get('IPAMConfig') or {}
            ipam_config = {
                key: ipam_config_raw[key]
                for key in ('IPv4Address', 'IPv6Address', 'LinkLocalIPs')
                if ipam_config_raw.get(key)
            }
            if ipam_config:
                endpoint['IPAMConfig'] = ipam_config

            aliases = [alias for alias in network_data.get('Aliases') or [] if alias != short_id]
            if aliases:
                endpoint['Aliases'] = aliases

            if network_data.get('Links'):
                endpoint['Links'] = list(network_data['Links'])

            if network_data.get('DriverOpts'):
                endpoint['DriverOpts'] = dict(network_data['DriverOpts'])

            endpoints[network_name] = endpoint

        return {'EndpointsConfig': endpoints}
