"""Time source used by the job processor and queue service."""
import time


class Clock:
    """Wall clock with a blocking sleep; replaced by a fake in tests."""

    def time(self) -> float:
        return time.time()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def now_ms(self) -> int:
        return int(self.time() * 1000)


SYSTEM_CLOCK = Clock()
