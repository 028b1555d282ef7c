from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import psutil
import pytest


class FakeReasonCode:
    def __init__(self, failure: bool = False, text: str = "Success") -> None:
        self.is_failure = failure
        self._text = text

    def __str__(self) -> str:
        return self._text


class FakeMqttClient:
    """Stands in for paho's Client; records everything published."""

    def __init__(self, client_id: str, factory: "FakeClientFactory") -> None:
        self.client_id = client_id
        self.factory = factory
        self.on_connect = None
        self.on_disconnect = None
        self.username = None
        self.password = None
        self.tls = False
        self.address = None
        self.loop_running = False
        self.disconnect_calls = 0
        self.published: list[tuple[str, str, bool]] = []

    def username_pw_set(self, username, password=None) -> None:
        self.username = username
        self.password = password

    def tls_set(self) -> None:
        self.tls = True

    def connect(self, host, port, keepalive) -> None:  # noqa: ARG002
        if self.factory.unreachable:
            raise ConnectionRefusedError("Connection refused")
        self.address = (host, port)

    def loop_start(self) -> None:
        self.loop_running = True
        if self.factory.refuse:
            code = FakeReasonCode(True, "Not authorized")
        else:
            code = FakeReasonCode()
        self.on_connect(self, None, {}, code, None)

    def loop_stop(self) -> None:
        self.loop_running = False

    def publish(self, topic, payload, qos=0, retain=False):  # noqa: ARG002
        if topic in self.factory.fail_topics:
            return SimpleNamespace(rc=mqtt.MQTT_ERR_NO_CONN)
        self.published.append((topic, payload, retain))
        return SimpleNamespace(rc=mqtt.MQTT_ERR_SUCCESS)

    def disconnect(self):
        self.disconnect_calls += 1
        if self.factory.disconnect_error:
            raise OSError("socket closed")
        return mqtt.MQTT_ERR_SUCCESS


class FakeClientFactory:
    def __init__(self) -> None:
        self.clients: list[FakeMqttClient] = []
        self.unreachable = False
        self.refuse = False
        self.disconnect_error = False
        self.fail_topics: set[str] = set()

    def __call__(self, client_id: str) -> FakeMqttClient:
        client = FakeMqttClient(client_id, self)
        self.clients.append(client)
        return client

    @property
    def client(self) -> FakeMqttClient:
        return self.clients[-1]


class FakeHost:
    """Controllable replacements for the psutil calls the collector makes."""

    def __init__(self) -> None:
        self.boot = 1_000_000.0
        self.user = 100.0
        self.system = 50.0
        self.idle = 850.0
        self.memory_total = 8_000
        self.memory_available = 2_000
        self.swap_total = 4_000
        self.swap_free = 3_000
        self.disks = {"/": (1_000, 250)}
        self.battery = None
        self.fail = set()

    def _check(self, name: str) -> None:
        if name in self.fail:
            raise OSError(f"{name} unavailable")

    def boot_time(self) -> float:
        self._check("boot_time")
        return self.boot

    def cpu_times(self):
        self._check("cpu_times")
        return SimpleNamespace(user=self.user, system=self.system, idle=self.idle)

    def virtual_memory(self):
        self._check("virtual_memory")
        return SimpleNamespace(total=self.memory_total, available=self.memory_available)

    def swap_memory(self):
        self._check("swap_memory")
        return SimpleNamespace(total=self.swap_total, free=self.swap_free)

    def disk_usage(self, path):
        if path not in self.disks:
            raise FileNotFoundError(2, "No such file or directory", path)
        total, free = self.disks[path]
        return SimpleNamespace(total=total, free=free)

    def sensors_battery(self):
        self._check("sensors_battery")
        return self.battery


@pytest.fixture()
def fake_host(monkeypatch) -> FakeHost:
    host = FakeHost()
    for name in (
        "boot_time",
        "cpu_times",
        "virtual_memory",
        "swap_memory",
        "disk_usage",
        "sensors_battery",
    ):
        monkeypatch.setattr(psutil, name, getattr(host, name))
    return host


@pytest.fixture()
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()


@pytest.fixture()
def power_supply(tmp_path) -> Path:
    path = tmp_path / "power_supply"
    path.mkdir()
    return path


@pytest.fixture()
def add_battery(power_supply):
    def _add(
        name: str = "BAT0",
        status: str = "Discharging",
        energy_now: int = 50,
        energy_full: int = 100,
        kind: str = "Battery",
    ) -> Path:
        supply = power_supply / name
        supply.mkdir()
        (supply / "type").write_text(f"{kind}\n")
        (supply / "status").write_text(f"{status}\n")
        (supply / "energy_now").write_text(f"{energy_now}\n")
        (supply / "energy_full").write_text(f"{energy_full}\n")
        return supply

    return _add
