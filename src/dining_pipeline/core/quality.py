from __future__ import annotations

from collections.abc import Sequence

from dining_pipeline.core.exceptions import RejectionThresholdError
from dining_pipeline.core.models import Rejection


class RejectionGate:
    def __init__(self, max_reject_ratio: float = 0.2, reject_sample_size: int = 5) -> None:
        if max_reject_ratio < 0 or max_reject_ratio > 1:
            raise ValueError("max_reject_ratio must be between 0 and 1")
        if reject_sample_size < 0:
            raise ValueError("reject_sample_size must be >= 0")
        self._max_reject_ratio = max_reject_ratio
        self._reject_sample_size = reject_sample_size

    def reject_ratio(self, total: int, rejections: Sequence[Rejection]) -> float:
        if total <= 0:
            return 0.0
        return len(rejections) / total

    def check(self, total: int, rejections: Sequence[Rejection]) -> float:
        ratio = self.reject_ratio(total, rejections)
        if ratio > self._max_reject_ratio:
            samples = rejections[: self._reject_sample_size]
            sample_summary = ", ".join(f"{item.identifier or '?'}:{item.reason}" for item in samples)
            raise RejectionThresholdError(
                f"rejection threshold exceeded: rejected={len(rejections)}, total={total}, samples={sample_summary}"
            )
        return ratio
