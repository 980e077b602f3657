"""
Configuration Management for WatchDucker
Centralizes all environment-based configuration and settings
"""

import argparse
import os
import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Optional, Sequence, Tuple

from croniter import croniter

DEFAULT_CRON = '0 2 * * *'
DEFAULT_UPDATE_LABEL = 'watchducker.update'
DEFAULT_SELF_LABEL = 'watchducker.self'
DEFAULT_SELF_IMAGE_KEYWORD = 'watchducker'

ENV_PREFIX = 'WATCHDUCKER_'

# Loggers that are chatty at INFO/DEBUG and say nothing the updater doesn't
NOISY_LOGGERS = ('urllib3', 'docker', 'httpx', 'httpcore')


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


def setup_logging(level: str = 'INFO', log_dir: Optional[str] = None):
    """Configure application logging with rotation"""
    from .paths import LOG_DIR

    log_level = logging.getLevelName(level.upper()) if level else logging.INFO
    if not isinstance(log_level, int):
        log_level = logging.INFO

    # Create logs directory with secure permissions
    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, mode=0o700, exist_ok=True)

    # Set up root logger
    root_logger = logging.getLogger()

    # Close and clear any existing handlers so repeated setup doesn't duplicate
    # output or leak file descriptors
    for handler in root_logger.handlers[:]:  # Copy list to avoid modification during iteration
        handler.close()
        root_logger.removeHandler(handler)

    root_logger.setLevel(log_level)

    # Console handler for stdout
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler with rotation for application logs
    # Max 10MB per file, keep 14 backups
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'watchducker.log'),
        maxBytes=10*1024*1024,  # 10MB
        backupCount=14,  # Keep 14 old files
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(console_formatter)

    # Add handlers to root logger
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(ENV_PREFIX + name, default)


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_number(name: str, default, cast=int):
    value = _env(name)
    if value is None or value == '':
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {value!r}")


def parse_container_list(value: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated container list, dropping blanks and leading '/'."""
    if not value:
        return ()
    return tuple(name.strip().lstrip('/') for name in value.split(',') if name.strip())


def build_arg_parser() -> argparse.ArgumentParser:
    """Command-line flags. Defaults come from WATCHDUCKER_* environment variables."""
    from .paths import NOTIFY_CONFIG_FILE

    parser = argparse.ArgumentParser(
        prog='watchducker',
        description='Check running containers for newer images and recreate them on the new image.',
        epilog=(
            'Selection priority: container names > --all > --label-reversed > --label. '
            'Examples: "watchducker --once nginx redis", '
            '"watchducker --cron \'*/30 * * * *\' --label --clean"'
        ),
    )
    parser.add_argument('containers', nargs='*', help='Container names to check')
    parser.add_argument('--all', dest='check_all', action='store_true', default=_env_bool('ALL'),
                        help='Check every container regardless of labels')
    parser.add_argument('--label', dest='check_label', action='store_true', default=_env_bool('LABEL'),
                        help='Check containers labelled <update-label>=true')
    parser.add_argument('--label-reversed', dest='check_label_reversed', action='store_true',
                        default=_env_bool('LABEL_REVERSED'),
                        help='Check containers without the <update-label>=true label')
    parser.add_argument('--cron', default=_env('CRON', DEFAULT_CRON),
                        help=f'Cron expression for scheduled runs (default "{DEFAULT_CRON}")')
    parser.add_argument('--once', dest='run_once', action='store_true', default=_env_bool('ONCE'),
                        help='Run one check/update cycle and exit')
    parser.add_argument('--clean', dest='clean_up', action='store_true', default=_env_bool('CLEAN'),
                        help='Remove dangling images after updating')
    parser.add_argument('--no-restart', dest='no_restart', action='store_true', default=_env_bool('NO_RESTART'),
                        help='Pull new images but do not recreate containers')
    parser.add_argument('--include-stopped', dest='include_stopped', action='store_true',
                        default=_env_bool('INCLUDE_STOPPED'),
                        help='Include stopped containers (default: running only)')
    parser.add_argument('--disabled-containers', default=_env('DISABLED_CONTAINERS', ''),
                        help='Comma-separated container names to exclude')
    parser.add_argument('--update-label', default=_env('UPDATE_LABEL', DEFAULT_UPDATE_LABEL),
                        help=f'Label key used by --label/--label-reversed (default {DEFAULT_UPDATE_LABEL})')
    parser.add_argument('--self-label', default=_env('SELF_LABEL', DEFAULT_SELF_LABEL),
                        help=f'Label key marking the updater container (default {DEFAULT_SELF_LABEL})')
    parser.add_argument('--self-image-fallback', action='store_true', default=_env_bool('SELF_IMAGE_FALLBACK'),
                        help='Also treat containers whose image contains --self-image-keyword as the updater')
    parser.add_argument('--self-image-keyword', default=_env('SELF_IMAGE_KEYWORD', DEFAULT_SELF_IMAGE_KEYWORD),
                        help=f'Image substring used by --self-image-fallback (default {DEFAULT_SELF_IMAGE_KEYWORD})')
    parser.add_argument('--max-concurrent-checks', type=int, default=_env_number('MAX_CONCURRENT_CHECKS', 4),
                        help='Maximum number of images checked at the same time')
    parser.add_argument('--stop-timeout', type=int, default=_env_number('STOP_TIMEOUT', 30),
                        help='Seconds to wait for a container to stop')
    parser.add_argument('--pull-timeout', type=int, default=_env_number('PULL_TIMEOUT', 1800),
                        help='Seconds allowed for a single image pull')
    parser.add_argument('--engine-timeout', type=float, default=_env_number('ENGINE_TIMEOUT', None, float),
                        help='Deadline in seconds for each other engine call (default: none)')
    parser.add_argument('--notify-config', default=NOTIFY_CONFIG_FILE,
                        help='Path to push.yaml notification settings')
    parser.add_argument('--log-level', default=_env('LOG_LEVEL', 'INFO'),
                        help='DEBUG, INFO, WARNING or ERROR')
    return parser


@dataclass(frozen=True)
class UpdaterConfig:
    """
    Immutable run configuration.

    Built once at startup and handed to every component that needs it.
    """
    container_names: Tuple[str, ...] = ()
    check_all: bool = False
    check_label: bool = False
    check_label_reversed: bool = False
    cron: str = DEFAULT_CRON
    run_once: bool = False
    clean_up: bool = False
    no_restart: bool = False
    include_stopped: bool = False
    disabled_containers: Tuple[str, ...] = ()
    update_label: str = DEFAULT_UPDATE_LABEL
    self_label: str = DEFAULT_SELF_LABEL
    self_image_fallback: bool = False
    self_image_keyword: str = DEFAULT_SELF_IMAGE_KEYWORD
    max_concurrent_checks: int = 4
    stop_timeout: int = 30
    pull_timeout: int = 1800
    engine_timeout: Optional[float] = None
    log_level: str = 'INFO'
    notify_config: Optional[str] = None

    @classmethod
    def from_env(cls, argv: Optional[Sequence[str]] = None) -> 'UpdaterConfig':
        """
        Build the configuration from WATCHDUCKER_* variables overlaid by flags.

        Raises:
            ConfigError: If the resulting configuration is invalid
        """
        args = build_arg_parser().parse_args(argv)
        config = cls(
            container_names=tuple(name.lstrip('/') for name in args.containers),
            check_all=args.check_all,
            check_label=args.check_label,
            check_label_reversed=args.check_label_reversed,
            cron=args.cron,
            run_once=args.run_once,
            clean_up=args.clean_up,
            no_restart=args.no_restart,
            include_stopped=args.include_stopped,
            disabled_containers=parse_container_list(args.disabled_containers),
            update_label=args.update_label,
            self_label=args.self_label,
            self_image_fallback=args.self_image_fallback,
            self_image_keyword=args.self_image_keyword,
            max_concurrent_checks=args.max_concurrent_checks,
            stop_timeout=args.stop_timeout,
            pull_timeout=args.pull_timeout,
            engine_timeout=args.engine_timeout,
            log_level=args.log_level,
            notify_config=args.notify_config,
        )
        config.validate()
        return config

    @property
    def selection_mode(self) -> str:
        """Which discovery mode applies: names, all, label_reversed or label."""
        if self.container_names:
            return 'names'
        if self.check_all:
            return 'all'
        if self.check_label_reversed:
            return 'label_reversed'
        if self.check_label:
            return 'label'
        return ''

    def validate(self):
        """Validate configuration"""
        if not self.selection_mode:
            raise ConfigError(
                "Specify container names or one of --label, --all, --label-reversed"
            )

        if not self.run_once and not croniter.is_valid(self.cron):
            raise ConfigError(f"Invalid cron expression: {self.cron!r}")

        if self.max_concurrent_checks < 1:
            raise ConfigError(f"max_concurrent_checks must be at least 1: {self.max_concurrent_checks}")

        if self.stop_timeout < 1:
            raise ConfigError(f"stop_timeout must be at least 1 second: {self.stop_timeout}")

        if self.pull_timeout < 1:
            raise ConfigError(f"pull_timeout must be at least 1 second: {self.pull_timeout}")

        if self.engine_timeout is not None and self.engine_timeout <= 0:
            raise ConfigError(f"engine_timeout must be positive: {self.engine_timeout}")

        if not self.update_label or not self.self_label:
            raise ConfigError("Label keys must not be empty")

        if self.self_image_fallback and not self.self_image_keyword:
            raise ConfigError("self_image_keyword must not be empty when the image fallback is enabled")

        return True
