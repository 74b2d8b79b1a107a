"""Randomized call latency and job timing for the simulated backend."""

import random
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

Range = Tuple[float, float]

# Seconds per gateway call: (min, max)
DEFAULT_CALL_LATENCY: Dict[str, Range] = {
    "health": (0.18, 0.3),
    "create_document_set": (0.6, 1.2),
    "upload_template": (0.5, 1.1),
    "create_job": (0.35, 0.85),
    "get_job": (0.22, 0.44),
    "download_output": (0.3, 0.6),
}


@dataclass
class LatencyModel:
    """Draws an independent delay for every simulated call."""
    ranges: Dict[str, Range] = field(default_factory=lambda: dict(DEFAULT_CALL_LATENCY))
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def none(cls) -> "LatencyModel":
        return cls(ranges={name: (0.0, 0.0) for name in DEFAULT_CALL_LATENCY})

    def sample(self, operation: str) -> float:
        low, high = self.ranges.get(operation, (0.0, 0.0))
        if high <= low:
            return low
        return self.rng.uniform(low, high)


@dataclass
class JobTiming:
    """How long a simulated job stays queued, then running."""
    queued_seconds: Range = (0.8, 1.6)
    running_seconds: Range = (4.5, 10.5)

    @classmethod
    def instant(cls) -> "JobTiming":
        return cls(queued_seconds=(0.0, 0.0), running_seconds=(0.0, 0.0))


@dataclass(frozen=True)
class JobTimeline:
    start_delay: float
    resolve_delay: float


def draw_timeline(timing: JobTiming, rng: Optional[random.Random] = None) -> JobTimeline:
    rng = rng or random.Random()
    return JobTimeline(
        start_delay=rng.uniform(*timing.queued_seconds),
        resolve_delay=rng.uniform(*timing.running_seconds),
    )
