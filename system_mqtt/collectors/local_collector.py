"""
Local Hardware Metrics Collector.

Samples uptime, CPU, memory, swap, disk and battery metrics from the local
machine using psutil, with batteries read from the Linux power supply class.
"""

import logging
import time
from pathlib import Path
from typing import List, Optional, Tuple

import psutil

from ..core.config import DriveConfig
from ..core.errors import SampleError
from ..core.models import (
    BatterySample,
    CpuSampleState,
    clamp_ratio,
    usage_percent,
)


logger = logging.getLogger(__name__)

POWER_SUPPLY_PATH = Path("/sys/class/power_supply")

SECONDS_PER_DAY = 86400.0

_SYSFS_STATES = {
    "charging": "charging",
    "discharging": "discharging",
    "empty": "empty",
    "full": "full",
}


class LocalCollector:
    """
    Collects host metrics from the local machine.

    Each method reads one metric and raises SampleError if the host query
    fails, so a caller can skip that metric for the current cycle.
    """

    def __init__(self, power_supply_path: Path = POWER_SUPPLY_PATH):
        self._power_supply_path = Path(power_supply_path)

    def uptime(self) -> float:
        """Time since boot, in days."""
        try:
            boot_time = psutil.boot_time()
        except Exception as e:
            raise SampleError(f"Failed to get uptime: {e}") from e
        return max(0.0, time.time() - boot_time) / SECONDS_PER_DAY

    def cpu_counters(self) -> CpuSampleState:
        """Read the cumulative used and total CPU time counters."""
        try:
            times = psutil.cpu_times()
        except Exception as e:
            raise SampleError(f"Failed to get CPU usage: {e}") from e
        used = times.user + times.system
        return CpuSampleState(previous_used_time=used, previous_total_time=used + times.idle)

    def cpu(
        self, previous: Optional[CpuSampleState]
    ) -> Tuple[Optional[float], CpuSampleState]:
        """
        CPU usage since `previous`, and the state for the next call.

        With no previous state the reading only seeds the counters and the
        returned percentage is None.
        """
        current = self.cpu_counters()
        if previous is None:
            return None, current

        used_delta = current.previous_used_time - previous.previous_used_time
        total_delta = current.previous_total_time - previous.previous_total_time
        if total_delta == 0:
            return 0.0, current

        return clamp_ratio(used_delta / total_delta) * 100.0, current

    def memory(self) -> float:
        """Memory in use, as a percentage."""
        try:
            mem = psutil.virtual_memory()
        except Exception as e:
            raise SampleError(f"Failed to get memory usage: {e}") from e
        return usage_percent(mem.total, mem.available)

    def swap(self) -> float:
        """Swap in use, as a percentage."""
        try:
            swap = psutil.swap_memory()
        except Exception as e:
            raise SampleError(f"Failed to get swap usage: {e}") from e
        return usage_percent(swap.total, swap.free)

    def disk(self, drives: List[DriveConfig]) -> List[Tuple[str, float]]:
        """Usage percentage for each configured drive that could be read."""
        results = []
        for drive in drives:
            try:
                usage = psutil.disk_usage(drive.path)
            except (PermissionError, OSError) as e:
                logger.warning(f"Unable to read drive usage statistics for {drive.path}: {e}")
                continue
            results.append((drive.name, usage_percent(usage.total, usage.free)))
        return results

    def battery(self) -> Optional[BatterySample]:
        """
        Metrics for the first detected battery, or None without a battery.

        Multiple batteries are not combined.
        """
        if self._power_supply_path.is_dir():
            try:
                return self._sysfs_battery()
            except (OSError, ValueError) as e:
                raise SampleError(f"Failed to read battery info: {e}") from e
        return self._psutil_battery()

    def _sysfs_battery(self) -> Optional[BatterySample]:
        for supply in sorted(self._power_supply_path.iterdir()):
            type_file = supply / "type"
            if not type_file.exists() or type_file.read_text().strip() != "Battery":
                continue
            if (supply / "present").exists() and (supply / "present").read_text().strip() == "0":
                continue

            energy, energy_full = self._read_counters(supply)
            status = ""
            if (supply / "status").exists():
                status = (supply / "status").read_text().strip().lower()

            return BatterySample(
                state=_SYSFS_STATES.get(status, "unknown"),
                energy=energy,
                energy_full=energy_full,
            )
        return None

    def _read_counters(self, supply: Path) -> Tuple[float, float]:
        """Read energy counters, falling back to charge counters."""
        for now_name, full_name in (("energy_now", "energy_full"), ("charge_now", "charge_full")):
            now_file = supply / now_name
            full_file = supply / full_name
            if now_file.exists() and full_file.exists():
                return float(now_file.read_text()), float(full_file.read_text())

        # Some drivers only expose a capacity percentage
        capacity = supply / "capacity"
        if capacity.exists():
            return float(capacity.read_text()), 100.0
        return 0.0, 0.0

    def _psutil_battery(self) -> Optional[BatterySample]:
        try:
            battery = psutil.sensors_battery()
        except Exception as e:
            raise SampleError(f"Failed to read battery info: {e}") from e

        if battery is None:
            return None

        if battery.power_plugged is None:
            state = "unknown"
        elif battery.percent >= 100 and battery.power_plugged:
            state = "full"
        elif battery.power_plugged:
            state = "charging"
        elif battery.percent <= 0:
            state = "empty"
        else:
            state = "discharging"

        return BatterySample(state=state, energy=float(battery.percent), energy_full=100.0)
