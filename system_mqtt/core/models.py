"""
Data models for sensors and host metrics.

These dataclasses describe the fixed Home Assistant sensor set and the
point-in-time values sampled from the local machine.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class SensorDefinition:
    """A sensor advertised through Home Assistant discovery."""

    name: str
    topic_class: str = "sensor"
    device_class: Optional[str] = None
    state_class: Optional[str] = None
    unit: Optional[str] = None
    icon: Optional[str] = None


AVAILABILITY = "availability"
UPTIME = "uptime"
CPU = "cpu"
MEMORY = "memory"
SWAP = "swap"
BATTERY_LEVEL = "battery_level"
BATTERY_STATE = "battery_state"

# Registration order matters: drives are appended after these.
FIXED_SENSORS: List[SensorDefinition] = [
    SensorDefinition(AVAILABILITY, icon="mdi:check-network-outline"),
    SensorDefinition(UPTIME, unit="days", icon="mdi:timer-sand"),
    SensorDefinition(CPU, state_class="measurement", unit="%", icon="mdi:gauge"),
    SensorDefinition(MEMORY, state_class="measurement", unit="%", icon="mdi:gauge"),
    SensorDefinition(SWAP, state_class="measurement", unit="%", icon="mdi:gauge"),
    SensorDefinition(
        BATTERY_LEVEL,
        device_class="battery",
        state_class="measurement",
        unit="%",
        icon="mdi:battery",
    ),
    SensorDefinition(BATTERY_STATE, icon="mdi:battery"),
]


def drive_sensor(name: str) -> SensorDefinition:
    """Sensor definition for a configured drive."""
    return SensorDefinition(name, state_class="measurement", unit="%", icon="mdi:folder")


@dataclass(frozen=True)
class CpuSampleState:
    """Cumulative CPU counters from the previous sample."""

    previous_used_time: float
    previous_total_time: float


BATTERY_STATES = ("charging", "discharging", "empty", "full", "unknown")


@dataclass
class BatterySample:
    """Battery metrics for the first detected battery."""

    state: str = "unknown"
    energy: float = 0.0
    energy_full: float = 0.0

    @property
    def level(self) -> float:
        """Charge level as a percentage in [0, 100]."""
        if self.energy_full <= 0:
            return 0.0
        return clamp_ratio(self.energy / self.energy_full) * 100.0

    @property
    def level_payload(self) -> str:
        """Level as a zero-padded three digit string, e.g. ``"050"``."""
        return f"{int(round(self.level)):03d}"


@dataclass
class CycleReport:
    """What happened during one sample and publish cycle."""

    published: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def clamp_ratio(value: float) -> float:
    """Clamp a ratio to [0, 1]."""
    return max(0.0, min(1.0, value))


def usage_percent(total: float, available: float) -> float:
    """Percentage of `total` that is in use; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return clamp_ratio((total - available) / total) * 100.0
