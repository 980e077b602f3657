"""
Tests for UpdaterConfig: flag/environment parsing and validation.
"""

import logging
import os
import pytest

from config.settings import ConfigError, UpdaterConfig, parse_container_list, setup_logging


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith('WATCHDUCKER_') and key not in ('WATCHDUCKER_DATA_DIR', 'WATCHDUCKER_NOTIFY_CONFIG'):
            monkeypatch.delenv(key)


@pytest.mark.unit
class TestFromEnv:

    def test_flags(self):
        config = UpdaterConfig.from_env(['--label', '--clean', '--cron', '*/30 * * * *', '--stop-timeout', '10'])

        assert config.check_label
        assert config.clean_up
        assert config.cron == '*/30 * * * *'
        assert config.stop_timeout == 10
        assert config.selection_mode == 'label'

    def test_positional_names(self):
        config = UpdaterConfig.from_env(['--once', 'nginx', '/redis'])

        assert config.container_names == ('nginx', 'redis')
        assert config.selection_mode == 'names'
        assert config.run_once

    def test_environment_defaults(self, monkeypatch):
        monkeypatch.setenv('WATCHDUCKER_ALL', 'true')
        monkeypatch.setenv('WATCHDUCKER_CRON', '0 4 * * 1')
        monkeypatch.setenv('WATCHDUCKER_DISABLED_CONTAINERS', 'db, /cache,,')
        monkeypatch.setenv('WATCHDUCKER_MAX_CONCURRENT_CHECKS', '8')
        monkeypatch.setenv('WATCHDUCKER_ENGINE_TIMEOUT', '45')

        config = UpdaterConfig.from_env([])

        assert config.check_all
        assert config.cron == '0 4 * * 1'
        assert config.disabled_containers == ('db', 'cache')
        assert config.max_concurrent_checks == 8
        assert config.engine_timeout == 45.0

    def test_flags_override_environment(self, monkeypatch):
        monkeypatch.setenv('WATCHDUCKER_ALL', '1')
        monkeypatch.setenv('WATCHDUCKER_STOP_TIMEOUT', '60')

        config = UpdaterConfig.from_env(['--stop-timeout', '5'])

        assert config.stop_timeout == 5

    def test_self_image_keyword(self, monkeypatch):
        assert UpdaterConfig.from_env(['--all']).self_image_keyword == 'watchducker'

        monkeypatch.setenv('WATCHDUCKER_SELF_IMAGE_FALLBACK', 'true')
        monkeypatch.setenv('WATCHDUCKER_SELF_IMAGE_KEYWORD', 'duck-updater')
        config = UpdaterConfig.from_env(['--all'])

        assert config.self_image_fallback
        assert config.self_image_keyword == 'duck-updater'
        assert UpdaterConfig.from_env(['--all', '--self-image-keyword', 'quack']).self_image_keyword == 'quack'

    def test_non_numeric_environment_value(self, monkeypatch):
        monkeypatch.setenv('WATCHDUCKER_PULL_TIMEOUT', 'forever')

        with pytest.raises(ConfigError):
            UpdaterConfig.from_env(['--all'])

    def test_no_selection_mode(self):
        with pytest.raises(ConfigError):
            UpdaterConfig.from_env([])


@pytest.mark.unit
class TestSelectionMode:

    @pytest.mark.parametrize("kwargs,mode", [
        ({'container_names': ('web',), 'check_all': True, 'check_label': True}, 'names'),
        ({'check_all': True, 'check_label_reversed': True}, 'all'),
        ({'check_label_reversed': True, 'check_label': True}, 'label_reversed'),
        ({'check_label': True}, 'label'),
        ({}, ''),
    ])
    def test_priority(self, kwargs, mode):
        assert UpdaterConfig(**kwargs).selection_mode == mode


@pytest.mark.unit
class TestValidate:

    def test_valid(self):
        assert UpdaterConfig(check_all=True).validate() is True

    def test_invalid_cron(self):
        with pytest.raises(ConfigError) as exc_info:
            UpdaterConfig(check_all=True, cron='every day').validate()

        assert 'every day' in str(exc_info.value)

    def test_invalid_cron_ignored_for_single_run(self):
        assert UpdaterConfig(check_all=True, cron='every day', run_once=True).validate()

    @pytest.mark.parametrize("kwargs", [
        {'max_concurrent_checks': 0},
        {'stop_timeout': 0},
        {'pull_timeout': -1},
        {'engine_timeout': 0},
        {'update_label': ''},
        {'self_label': ''},
        {'self_image_fallback': True, 'self_image_keyword': ''},
    ])
    def test_rejected_values(self, kwargs):
        with pytest.raises(ConfigError):
            UpdaterConfig(check_all=True, **kwargs).validate()

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)


@pytest.mark.unit
@pytest.mark.parametrize("value,expected", [
    (None, ()),
    ('', ()),
    ('web', ('web',)),
    (' web , /db ,, ', ('web', 'db')),
])
def test_parse_container_list(value, expected):
    assert parse_container_list(value) == expected


@pytest.mark.unit
def test_setup_logging_replaces_handlers(tmp_path, monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, 'handlers', [])
    monkeypatch.setattr(root, 'level', root.level)

    setup_logging('DEBUG', log_dir=str(tmp_path))
    setup_logging('DEBUG', log_dir=str(tmp_path))

    try:
        assert len(root.handlers) == 2
        assert root.level == logging.DEBUG
        assert (tmp_path / 'watchducker.log').exists()
        assert logging.getLogger('urllib3').level == logging.WARNING
    finally:
        for handler in root.handlers[:]:
            handler.close()
