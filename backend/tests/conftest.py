"""
Shared pytest fixtures for WatchDucker tests.

Fixtures provided:
- mock_docker_client: Mock Docker SDK client
- make_container: Factory for docker-py Container mocks (as returned by containers.list)
- make_image: Factory for docker-py Image mocks (as returned by images.get)
- container_inspect: `docker inspect` of a customized nginx container
- image_inspect: `docker image inspect` of the image it runs

Note: No test talks to a real Docker engine. SDK calls run through
asyncio.to_thread(), which calls the mocks synchronously in a worker thread.
"""

import copy
import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

FULL_CONTAINER_ID = 'abc123def456789012345678901234567890123456789012345678901234'
NEW_CONTAINER_ID = 'new123456789abcdef0123456789abcdef0123456789abcdef0123456789ab'


@pytest.fixture
def mock_docker_client():
    """
    Mock Docker SDK client for testing without real Docker daemon.

    Returns a MagicMock with common Docker SDK methods stubbed.
    """
    client = MagicMock()

    # Mock containers.list()
    client.containers.list = MagicMock(return_value=[])

    # Low-level API used for create/start
    client.api.api_version = "1.51"
    client.api.create_container = MagicMock(return_value={'Id': NEW_CONTAINER_ID})
    client.api.start = MagicMock()
    client.api.remove_container = MagicMock()
    client.api.pull = MagicMock(return_value=iter([]))

    # Mock ping()
    client.ping = MagicMock(return_value=True)

    return client


@pytest.fixture
def make_container():
    """Factory: make_container(name, image, labels=None, status='running', container_id=None)."""
    def _make(name, image, labels=None, status='running', container_id=None):
        container_id = container_id or (name.encode().hex() + '0' * 64)[:64]
        container = MagicMock()
        container.id = container_id
        container.short_id = container_id[:12]
        container.name = name
        container.status = status
        container.attrs = {
            'Id': container_id,
            'Name': f'/{name}',
            'State': {'Status': status},
            'Config': {
                'Image': image,
                'Labels': dict(labels or {}),
            },
        }
        return container
    return _make


@pytest.fixture
def make_image():
    """Factory: make_image(image_id, tags=None, digests=None, config=None)."""
    def _make(image_id, tags=None, digests=None, config=None):
        image = MagicMock()
        image.id = image_id
        image.tags = list(tags or [])
        image.attrs = {
            'Id': image_id,
            'RepoTags': list(tags or []),
            'RepoDigests': list(digests or []),
            'Config': copy.deepcopy(config or {}),
        }
        return image
    return _make


@pytest.fixture
def image_inspect():
    """Image config of nginx:latest as the engine reports it."""
    return {
        'Id': 'sha256:bbb',
        'RepoTags': ['nginx:latest'],
        'RepoDigests': ['nginx@sha256:0123'],
        'Config': {
            'Env': ['PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin', 'NGINX_VERSION=1.27.0'],
            'Cmd': ['nginx', '-g', 'daemon off;'],
            'Entrypoint': ['/docker-entrypoint.sh'],
            'WorkingDir': '',
            'User': '',
            'Labels': {'maintainer': 'NGINX Docker Maintainers'},
            'ExposedPorts': {'80/tcp': {}},
            'Volumes': None,
            'StopSignal': 'SIGQUIT',
        },
    }


@pytest.fixture
def container_inspect():
    """
    `docker inspect` of a container created from nginx:latest with user overrides:
    an extra env var, an extra label, a bind-mounted port and a custom network alias.
    """
    return {
        'Id': FULL_CONTAINER_ID,
        'Name': '/web',
        'Config': {
            'Hostname': FULL_CONTAINER_ID[:12],
            'Domainname': '',
            'User': '',
            'Env': [
                'TZ=Europe/Berlin',
                'PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin',
                'NGINX_VERSION=1.27.0',
            ],
            'Cmd': ['nginx', '-g', 'daemon off;'],
            'Entrypoint': ['/docker-entrypoint.sh'],
            'Image': 'nginx:latest',
            'WorkingDir': '',
            'Labels': {
                'maintainer': 'NGINX Docker Maintainers',
                'watchducker.update': 'true',
            },
            'ExposedPorts': {'80/tcp': {}, '443/tcp': {}},
            'Volumes': None,
            'StopSignal': 'SIGQUIT',
            'Tty': False,
            'OpenStdin': False,
        },
        'HostConfig': {
            'NetworkMode': 'frontend',
            'PortBindings': {'443/tcp': [{'HostIp': '', 'HostPort': '8443'}]},
            'RestartPolicy': {'Name': 'unless-stopped', 'MaximumRetryCount': 0},
            'Binds': ['/srv/www:/usr/share/nginx/html:ro'],
            'Links': None,
        },
        'NetworkSettings': {
            'Networks': {
                'frontend': {
                    'IPAMConfig': None,
                    'Links': None,
                    'Aliases': ['web', FULL_CONTAINER_ID[:12]],
                    'NetworkID': 'net1',
                    'EndpointID': 'ep1',
                    'IPAddress': '172.20.0.5',
                },
                'backend': {
                    'IPAMConfig': {'IPv4Address': '172.21.0.10'},
                    'Links': None,
                    'Aliases': None,
                    'NetworkID': 'net2',
                    'EndpointID': 'ep2',
                    'IPAddress': '172.21.0.10',
                },
            },
        },
    }
