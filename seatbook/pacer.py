"""Tie virtual time to the wall clock."""

import time

from asimpy import Process


class RealTimePacer(Process):
    """Sleeps real time alongside virtual time so timers feel real.

    With scale=1.0 one simulated second takes one wall-clock second.
    The pacer never finishes, so run the environment with an ``until``.
    """

    def init(self, step: float = 0.05, scale: float = 1.0):
        if step <= 0:
            raise ValueError("step must be positive")
        self.step = step
        self.scale = scale
        self.ticks = 0

    async def run(self):
        while True:
            started = time.monotonic()
            await self.timeout(self.step)
            # Only sleep for what is left of this step's wall-clock budget
            remaining = self.step * self.scale - (time.monotonic() - started)
            if remaining > 0:
                time.sleep(remaining)
            self.ticks += 1
