from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff: initial_delay, then * multiplier, max_attempts tries in total"""
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_attempts: int = 5

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.multiplier < 1:
            raise ValueError("initial_delay must be >= 0 and multiplier >= 1")

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry (max_attempts - 1 values)"""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield delay
            delay *= self.multiplier


# Used for registry and cursor writes
WRITE_RETRY = RetryPolicy(initial_delay=0.5, multiplier=2.0, max_attempts=3)
