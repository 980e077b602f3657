"""
Plain-text reporting for update cycles.

Rendered blocks go to the log and are reused as notification bodies.
"""

import logging
from typing import List, Optional

from updates.types import BatchCheckResult, ContainerRecord, ImageCheckResult, ProgressCallback, UpdateReport

logger = logging.getLogger(__name__)

STATUS_UP_TO_DATE = 'up to date'
STATUS_UPDATED = 'update available'
STATUS_FAILED = 'failed'


def image_status(result: ImageCheckResult) -> str:
    if result.failed:
        return STATUS_FAILED
    if result.updated:
        return STATUS_UPDATED
    return STATUS_UP_TO_DATE


def make_progress_logger(log: Optional[logging.Logger] = None) -> ProgressCallback:
    """Progress observer that logs one line per checked image."""
    log = log or logger

    def observer(result: ImageCheckResult) -> None:
        status = image_status(result)
        if result.failed:
            log.warning(f"Image {result.image:<30} {status}: {result.error}")
        else:
            log.info(f"Image {result.image:<30} {status}")

    return observer


def format_container_table(containers: List[ContainerRecord]) -> str:
    lines = ["=== Containers ==="]
    if not containers:
        lines.append("No matching containers found")
        return '\n'.join(lines)

    lines.append(f"{'ID':<12} {'NAME':<20} {'IMAGE':<30} STATE")
    lines.append('-' * 72)
    for container in containers:
        lines.append(f"{container.id:<12} {container.name:<20} {container.image:<30} {container.state}")
    return '\n'.join(lines)


def format_batch_summary(batch: BatchCheckResult) -> str:
    summary = batch.summary
    return '\n'.join([
        "=== Summary ===",
        f"Matched containers: {summary.total_containers}",
        f"Images checked:     {summary.total_images}",
        f"Updated:            {summary.updated}",
        f"Up to date:         {summary.up_to_date}",
        f"Failed:             {summary.failed}",
        f"Duration:           {summary.duration:.3f}s",
    ])


def format_update_summary(batch: BatchCheckResult, report: Optional[UpdateReport] = None) -> str:
    """
    Per-image outcome, plus per-container outcome when updates were applied.

    Up-to-date images are left out; the block lists only what changed or failed.
    """
    lines = ["=== Updates ==="]
    for result in batch.images:
        if result.failed:
            lines.append(f"Image {result.image:<30} failed: {result.error}")
        elif result.updated:
            lines.append(f"Image {result.image:<30} updated")

    if report is not None:
        if report.skipped:
            lines.append("Containers were not recreated (no-restart)")
        for update in report.results:
            if update.success:
                line = f"Container {update.container_name:<20} recreated ({update.new_container_id})"
                if update.warnings:
                    line += f" with warnings: {'; '.join(update.warnings)}"
            else:
                line = f"Container {update.container_name:<20} failed: {update.error_message}"
                if update.rollback_performed:
                    line += " (rolled back)"
            lines.append(line)

    return '\n'.join(lines)
