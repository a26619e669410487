import time
import logging

logger = logging.getLogger('migrator.rate_limiter')

# Wait after the upstream answered 429
COOLDOWN_SECONDS = 60


def request_delay_ms(requests_per_minute):
    """Fixed per-item delay, rounded half up to whole milliseconds"""
    return int(60000 / requests_per_minute + 0.5)


class RateLimiter:
    def __init__(self, requests_per_minute, sleep=time.sleep, cooldown_seconds=COOLDOWN_SECONDS):
        self.delay_ms = request_delay_ms(requests_per_minute)
        self.cooldown_seconds = cooldown_seconds
        self._sleep = sleep

    def wait(self):
        """Pause between two attempted items"""
        self._sleep(self.delay_ms / 1000.0)

    def cooldown(self):
        logger.warning(f"Rate limited, waiting {self.cooldown_seconds} seconds...")
        self._sleep(self.cooldown_seconds)
