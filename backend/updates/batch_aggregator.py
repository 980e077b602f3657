"""
Thread-safe collection point for per-image check results.
"""

import logging
import threading
from typing import List, Optional

from updates.types import BatchCheckResult, BatchSummary, ContainerRecord, ImageCheckResult

logger = logging.getLogger(__name__)


class BatchAggregator:
    """
    Collects ImageCheckResults from concurrent detection tasks.

    Results are kept in arrival order. The summary is computed from counts
    only, so it does not depend on the order tasks completed in.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: List[ImageCheckResult] = []
        self._first_error: Optional[BaseException] = None
        self._error_count = 0

    def add(self, result: ImageCheckResult, error: Optional[BaseException] = None) -> None:
        with self._lock:
            self._results.append(result)
            if error is not None:
                self._error_count += 1
                if self._first_error is None:
                    self._first_error = error

    @property
    def results(self) -> List[ImageCheckResult]:
        with self._lock:
            return list(self._results)

    @property
    def first_error(self) -> Optional[BaseException]:
        return self._first_error

    @property
    def error_count(self) -> int:
        return self._error_count

    def summarize(self, total_containers: int, duration: float) -> BatchSummary:
        """Count outcomes. Failed wins over updated, so every result lands in exactly one bucket."""
        summary = BatchSummary(total_containers=total_containers, duration=duration)
        for result in self.results:
            summary.total_images += 1
            if result.failed:
                summary.failed += 1
            elif result.updated:
                summary.updated += 1
            else:
                summary.up_to_date += 1
        return summary

    def build(
        self,
        containers: List[ContainerRecord],
        resolved_images: dict,
        duration: float
    ) -> BatchCheckResult:
        """Freeze the collected results into a BatchCheckResult. Call once all tasks are done."""
        return BatchCheckResult(
            containers=list(containers),
            images=self.results,
            summary=self.summarize(len(containers), duration),
            resolved_images=dict(resolved_images),
            first_error=self._first_error,
        )
