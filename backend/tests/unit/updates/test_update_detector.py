"""
Tests for UpdateDetector.

Covers:
- Deduplication: N containers on K distinct images cost exactly K pulls
- Hash comparison: local != post-pull means updated
- Idempotence across repeated runs against unchanged images
- Summary invariant: updated + up_to_date + failed == total images
- Failure isolation: one failing image never blocks the others
- Unresolvable references become failed results without a pull
"""

import asyncio
import pytest
from unittest.mock import MagicMock

import docker

from updates.types import ContainerRecord, ImageCheckResult
from updates.update_detector import UpdateDetector


class FakeRegistry:
    """
    Local image store + registry stand-in.

    `local` maps reference -> current local image ID; `remote` maps
    reference -> ID the registry serves. A pull copies remote into local.
    """

    def __init__(self, make_image, local, remote, failing_pulls=()):
        self.make_image = make_image
        self.local = dict(local)
        self.remote = dict(remote)
        self.failing_pulls = set(failing_pulls)
        self.pulls = []

    def get(self, reference):
        if reference not in self.local:
            raise docker.errors.ImageNotFound(f"No such image: {reference}")
        return self.make_image(self.local[reference], tags=[reference])

    def stream_pull(self, client, image, timeout=1800):
        self.pulls.append(image)
        if image in self.failing_pulls:
            raise docker.errors.APIError(f"manifest for {image} not found")
        self.local[image] = self.remote.get(image, self.local.get(image))
        return 1


def record(name, image, labels=None):
    return ContainerRecord(id=f"{name:0<12}"[:12], name=name, image=image, labels=labels or {})


def make_detector(client, registry, **kwargs):
    client.images.get = MagicMock(side_effect=registry.get)
    tracker = MagicMock()
    tracker.stream_pull = MagicMock(side_effect=registry.stream_pull)
    return UpdateDetector(client, pull_tracker=tracker, **kwargs)


@pytest.mark.unit
class TestDeduplication:

    @pytest.mark.asyncio
    async def test_repeated_image_is_pulled_once(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image,
            local={'nginx:latest': 'sha256:aaa', 'redis:7': 'sha256:ccc'},
            remote={'nginx:latest': 'sha256:aaa', 'redis:7': 'sha256:ccc'},
        )
        detector = make_detector(mock_docker_client, registry)
        containers = [
            record('web', 'nginx:latest'),
            record('cache', 'redis:7'),
            record('web2', 'nginx:latest'),
        ]

        batch = await detector.check(containers)

        assert sorted(registry.pulls) == ['nginx:latest', 'redis:7']
        assert batch.summary.total_images == 2
        assert batch.summary.total_containers == 3

    @pytest.mark.asyncio
    async def test_k_distinct_images_cost_k_pulls(self, mock_docker_client, make_image):
        images = [f"app{i}:latest" for i in range(5)]
        registry = FakeRegistry(
            make_image,
            local={image: f'sha256:{i}' for i, image in enumerate(images)},
            remote={image: f'sha256:{i}' for i, image in enumerate(images)},
        )
        detector = make_detector(mock_docker_client, registry, max_concurrency=2)
        containers = [record(f"c{i}", images[i % 5]) for i in range(17)]

        await detector.check(containers)

        assert len(registry.pulls) == 5
        assert set(registry.pulls) == set(images)

    @pytest.mark.asyncio
    async def test_id_and_tag_resolving_to_same_reference_dedupe(self, mock_docker_client, make_image):
        """A container recorded by image ID and one recorded by tag share a single pull."""
        registry = FakeRegistry(
            make_image,
            local={'nginx:latest': 'sha256:aaa', 'sha256:aaa': 'sha256:aaa'},
            remote={'nginx:latest': 'sha256:aaa'},
        )
        detector = make_detector(mock_docker_client, registry)

        def get(reference):
            if reference == 'sha256:aaa':
                return make_image('sha256:aaa', tags=['nginx:latest'])
            return registry.get(reference)
        mock_docker_client.images.get.side_effect = get

        batch = await detector.check([record('a', 'sha256:aaa'), record('b', 'nginx:latest')])

        assert registry.pulls == ['nginx:latest']
        assert batch.resolved_images == {'a' + '0' * 11: 'nginx:latest', 'b' + '0' * 11: 'nginx:latest'}


@pytest.mark.unit
class TestHashComparison:

    @pytest.mark.asyncio
    async def test_changed_hash_is_updated(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image, local={'nginx:latest': 'sha256:aaa'}, remote={'nginx:latest': 'sha256:bbb'}
        )
        detector = make_detector(mock_docker_client, registry)

        batch = await detector.check([record('web', 'nginx:latest')])

        result = batch.images[0]
        assert result.local_hash == 'sha256:aaa'
        assert result.remote_hash == 'sha256:bbb'
        assert result.updated is True
        assert batch.summary.updated == 1

    @pytest.mark.asyncio
    async def test_same_hash_is_up_to_date(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image, local={'nginx:latest': 'sha256:aaa'}, remote={'nginx:latest': 'sha256:aaa'}
        )
        detector = make_detector(mock_docker_client, registry)

        batch = await detector.check([record('web', 'nginx:latest')])

        assert batch.images[0].updated is False
        assert batch.summary.up_to_date == 1

    @pytest.mark.asyncio
    async def test_repeated_runs_on_unchanged_images_report_no_update(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image, local={'nginx:latest': 'sha256:aaa'}, remote={'nginx:latest': 'sha256:aaa'}
        )
        detector = make_detector(mock_docker_client, registry)
        containers = [record('web', 'nginx:latest')]

        first = await detector.check(containers)
        second = await detector.check(containers)

        assert first.images[0].updated is False
        assert second.images[0].updated is False

    @pytest.mark.asyncio
    async def test_second_run_after_update_is_up_to_date(self, mock_docker_client, make_image):
        """Once pulled, the new image is the local one; the next run sees no change."""
        registry = FakeRegistry(
            make_image, local={'nginx:latest': 'sha256:aaa'}, remote={'nginx:latest': 'sha256:bbb'}
        )
        detector = make_detector(mock_docker_client, registry)
        containers = [record('web', 'nginx:latest')]

        first = await detector.check(containers)
        second = await detector.check(containers)

        assert first.images[0].updated is True
        assert second.images[0].updated is False


@pytest.mark.unit
class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_failed_pull_does_not_block_other_images(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image,
            local={'nginx:latest': 'sha256:aaa', 'private/app:1': 'sha256:ppp', 'redis:7': 'sha256:ccc'},
            remote={'nginx:latest': 'sha256:bbb', 'redis:7': 'sha256:ccc'},
            failing_pulls={'private/app:1'},
        )
        detector = make_detector(mock_docker_client, registry)

        batch = await detector.check([
            record('web', 'nginx:latest'),
            record('app', 'private/app:1'),
            record('cache', 'redis:7'),
        ])

        by_image = {result.image: result for result in batch.images}
        assert by_image['nginx:latest'].updated is True
        assert by_image['redis:7'].updated is False
        failed = by_image['private/app:1']
        assert failed.failed
        assert failed.updated is False
        assert 'failed to pull image' in failed.error
        assert failed.local_hash == 'sha256:ppp'
        assert batch.first_error is not None

        summary = batch.summary
        assert (summary.updated, summary.up_to_date, summary.failed) == (1, 1, 1)
        assert summary.updated + summary.up_to_date + summary.failed == summary.total_images

    @pytest.mark.asyncio
    async def test_missing_local_image_is_failed_without_pull(self, mock_docker_client, make_image):
        registry = FakeRegistry(make_image, local={}, remote={})
        detector = make_detector(mock_docker_client, registry)

        batch = await detector.check([record('web', 'nginx:latest')])

        assert registry.pulls == []
        assert batch.images[0].failed
        assert 'failed to read local image' in batch.images[0].error

    @pytest.mark.asyncio
    async def test_unresolvable_references_fail_without_pull(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image, local={'nginx:latest': 'sha256:aaa'}, remote={'nginx:latest': 'sha256:aaa'}
        )
        detector = make_detector(mock_docker_client, registry)

        def get(reference):
            if reference == 'sha256:orphan':
                return make_image('sha256:orphan', tags=['<none>:<none>'])
            return registry.get(reference)
        mock_docker_client.images.get.side_effect = get

        batch = await detector.check([
            record('orphan1', 'sha256:orphan'),
            record('orphan2', 'sha256:orphan'),
            record('web', 'nginx:latest'),
        ])

        assert registry.pulls == ['nginx:latest']
        assert batch.summary.total_images == 2
        assert batch.summary.failed == 1
        assert batch.summary.up_to_date == 1
        assert 'orphan1' + '0' * 5 not in batch.resolved_images
        assert batch.first_error is not None

    @pytest.mark.asyncio
    async def test_progress_observer_errors_are_contained(self, mock_docker_client, make_image):
        registry = FakeRegistry(
            make_image,
            local={'nginx:latest': 'sha256:aaa', 'redis:7': 'sha256:ccc'},
            remote={'nginx:latest': 'sha256:aaa', 'redis:7': 'sha256:ccc'},
        )
        detector = make_detector(mock_docker_client, registry)
        seen = []

        def observer(result):
            seen.append(result.image)
            raise RuntimeError("observer broke")

        batch = await detector.check([record('web', 'nginx:latest'), record('cache', 'redis:7')], observer)

        assert sorted(seen) == ['nginx:latest', 'redis:7']
        assert batch.summary.total_images == 2


@pytest.mark.unit
class TestConcurrency:

    def test_rejects_non_positive_concurrency(self, mock_docker_client):
        with pytest.raises(ValueError):
            UpdateDetector(mock_docker_client, max_concurrency=0)

    @pytest.mark.asyncio
    async def test_concurrent_checks_are_bounded(self, mock_docker_client, make_image):
        detector = UpdateDetector(mock_docker_client, max_concurrency=2)
        active = 0
        peak = 0

        async def slow_check(image):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return ImageCheckResult.from_hashes(image, 'sha256:a', 'sha256:a'), None

        detector.check_image = slow_check
        containers = [record(f"c{i}", f"img{i}:latest") for i in range(6)]

        batch = await detector.check(containers)

        assert peak == 2
        assert batch.summary.total_images == 6

    @pytest.mark.asyncio
    async def test_empty_container_list(self, mock_docker_client):
        detector = UpdateDetector(mock_docker_client)

        batch = await detector.check([])

        assert batch.images == []
        assert batch.summary.total_images == 0
        assert batch.first_error is None
