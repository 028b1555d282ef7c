"""
Periodic sample and publish loop.

Waits for the update interval or the shutdown event, whichever comes first,
then samples every metric and publishes it. Shutdown is only noticed between
cycles; a cycle that has started always runs to the end.
"""

import asyncio
import logging
from typing import List, Optional

from ..collectors.local_collector import LocalCollector
from ..core.config import DriveConfig
from ..core.errors import SampleError
from ..core.models import (
    BATTERY_LEVEL,
    BATTERY_STATE,
    CPU,
    MEMORY,
    SWAP,
    UPTIME,
    CpuSampleState,
    CycleReport,
)
from ..services.sensor_registry import SensorRegistry


logger = logging.getLogger(__name__)


class PollLoop:
    """Drives one sample and publish cycle per update interval."""

    def __init__(
        self,
        collector: LocalCollector,
        registry: SensorRegistry,
        drives: List[DriveConfig],
        interval: float,
        shutdown: asyncio.Event,
    ):
        self.collector = collector
        self.registry = registry
        self.drives = list(drives)
        self.interval = interval
        self.shutdown = shutdown
        self.cycles = 0
        self._cpu_state: Optional[CpuSampleState] = None

    def seed(self):
        """Take the first CPU reading so the first cycle can report a delta."""
        try:
            _, self._cpu_state = self.collector.cpu(None)
        except SampleError as e:
            # The first cycle seeds instead.
            logger.warning(f"{e}")

    async def run(self):
        """Run cycles until the shutdown event is set."""
        self.seed()

        while True:
            if await self._wait_for_tick():
                await self.run_cycle()
            else:
                logger.info("Terminate signal has been received.")
                return

    async def _wait_for_tick(self) -> bool:
        """Race the interval against shutdown; True means a tick."""
        if self.shutdown.is_set():
            return False

        tick = asyncio.ensure_future(asyncio.sleep(self.interval))
        stop = asyncio.ensure_future(self.shutdown.wait())
        try:
            done, _ = await asyncio.wait({tick, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            tick.cancel()
            stop.cancel()

        return stop not in done

    async def run_cycle(self) -> CycleReport:
        """Sample and publish every metric once, in a fixed order."""
        report = CycleReport()
        self.cycles += 1

        await self._report(report, UPTIME, lambda: str(self.collector.uptime()))
        await self._report(report, CPU, self._sample_cpu)
        await self._report(report, MEMORY, lambda: str(self.collector.memory()))
        await self._report(report, SWAP, lambda: str(self.collector.swap()))

        reported = set()
        for name, percent in self.collector.disk(self.drives):
            reported.add(name)
            await self._publish(report, name, str(percent))
        report.skipped.extend(d.name for d in self.drives if d.name not in reported)

        try:
            battery = self.collector.battery()
        except SampleError as e:
            logger.warning(f"{e}")
            battery = None
        if battery is None:
            report.skipped.extend([BATTERY_STATE, BATTERY_LEVEL])
        else:
            await self._publish(report, BATTERY_STATE, battery.state)
            await self._publish(report, BATTERY_LEVEL, battery.level_payload)

        logger.debug(
            f"Cycle {self.cycles}: published {len(report.published)}, "
            f"failed {len(report.failed)}, skipped {len(report.skipped)}"
        )
        return report

    def _sample_cpu(self) -> Optional[str]:
        percent, self._cpu_state = self.collector.cpu(self._cpu_state)
        if percent is None:
            return None
        return str(percent)

    async def _report(self, report: CycleReport, name: str, sample):
        try:
            value = sample()
        except SampleError as e:
            logger.warning(f"{e}")
            report.skipped.append(name)
            return

        if value is None:
            report.skipped.append(name)
            return
        await self._publish(report, name, value)

    async def _publish(self, report: CycleReport, name: str, value: str):
        if await self.registry.publish(name, value):
            report.published.append(name)
        else:
            report.failed.append(name)
