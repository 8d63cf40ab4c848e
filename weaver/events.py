"""Progress events emitted while the pipeline runs."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)

STAGES = ("chunking", "detection", "synthesis", "consequences", "convergence")


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    status: str  # start|complete
    step: int
    counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self):
        return {
            "stage": self.stage,
            "status": self.status,
            "step": self.step,
            "total_steps": len(STAGES),
            "counts": dict(self.counts),
        }


ProgressCallback = Callable[[ProgressEvent], None]


def emit_progress(callback: Optional[ProgressCallback], stage: str, status: str,
                  counts: Optional[Dict[str, int]] = None) -> None:
    """Send one event to the callback; callback errors are logged, never raised."""
    if callback is None:
        return
    event = ProgressEvent(
        stage=stage,
        status=status,
        step=STAGES.index(stage) + 1,
        counts=dict(counts or {}),
    )
    try:
        callback(event)
    except Exception as e:
        logger.warning(f"Progress callback failed for {stage}:{status}: {e}")
