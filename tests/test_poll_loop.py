from __future__ import annotations

import asyncio

import pytest

from system_mqtt.agent.availability import AvailabilityManager
from system_mqtt.agent.poll_loop import PollLoop
from system_mqtt.collectors.local_collector import LocalCollector
from system_mqtt.core.config import DriveConfig
from system_mqtt.core.errors import RegistrationError
from system_mqtt.services.mqtt_broker import BrokerSession, SessionState
from system_mqtt.services.sensor_registry import SensorRegistry

DRIVES = [DriveConfig("/", "root"), DriveConfig("/mnt/usb", "usb")]


async def _setup(client_factory, power_supply, interval: float = 30.0):
    session = BrokerSession("mqtt://broker.lan", client_factory=client_factory)
    await session.connect()
    registry = SensorRegistry(session, "box")
    await registry.register_all(DRIVES)
    client_factory.client.published.clear()
    loop = PollLoop(
        LocalCollector(power_supply_path=power_supply),
        registry,
        DRIVES,
        interval,
        asyncio.Event(),
    )
    return session, registry, loop


def test_cycle_order_and_values(fake_host, client_factory, power_supply, add_battery) -> None:
    add_battery("BAT0", status="Discharging", energy_now=50, energy_full=100)
    fake_host.disks["/mnt/usb"] = (100, 10)

    async def runner() -> None:
        _, _, loop = await _setup(client_factory, power_supply)
        loop.seed()
        fake_host.user += 25
        fake_host.idle += 75

        report = await loop.run_cycle()

        published = client_factory.client.published
        names = [topic.rsplit("/", 1)[1] for topic, _, _ in published]
        assert names == [
            "uptime",
            "cpu",
            "memory",
            "swap",
            "root",
            "usb",
            "battery_state",
            "battery_level",
        ]
        values = {topic.rsplit("/", 1)[1]: payload for topic, payload, _ in published}
        assert float(values["cpu"]) == pytest.approx(25.0)
        assert float(values["memory"]) == pytest.approx(75.0)
        assert float(values["usb"]) == pytest.approx(90.0)
        assert values["battery_state"] == "discharging"
        assert values["battery_level"] == "050"
        assert report.failed == []

    asyncio.run(runner())


def test_failing_metrics_do_not_stop_the_cycle(fake_host, client_factory, power_supply) -> None:
    fake_host.fail.update({"boot_time", "virtual_memory"})
    client_factory.fail_topics.add("system-mqtt/box/swap")

    async def runner() -> None:
        _, _, loop = await _setup(client_factory, power_supply)
        loop.seed()

        report = await loop.run_cycle()

        assert report.published == ["cpu", "root"]
        assert report.failed == ["swap"]
        assert report.skipped == ["uptime", "memory", "usb", "battery_state", "battery_level"]

    asyncio.run(runner())


def test_first_cycle_seeds_cpu_when_seed_failed(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        _, _, loop = await _setup(client_factory, power_supply)
        fake_host.fail.add("cpu_times")
        loop.seed()
        fake_host.fail.clear()

        first = await loop.run_cycle()
        second = await loop.run_cycle()

        assert "cpu" in first.skipped
        assert "cpu" in second.published

    asyncio.run(runner())


def test_identical_counters_publish_zero(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        _, _, loop = await _setup(client_factory, power_supply)
        loop.seed()
        await loop.run_cycle()

        cpu = [p for t, p, _ in client_factory.client.published if t.endswith("/cpu")]
        assert cpu == ["0.0"]

    asyncio.run(runner())


def test_shutdown_before_first_tick(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        _, _, loop = await _setup(client_factory, power_supply, interval=3600)
        loop.shutdown.set()

        await asyncio.wait_for(loop.run(), timeout=1)

        assert loop.cycles == 0
        assert client_factory.client.published == []

    asyncio.run(runner())


def test_shutdown_interrupts_the_wait_not_the_cycle(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        _, _, loop = await _setup(client_factory, power_supply, interval=0.01)
        collector = loop.collector
        original_swap = collector.swap

        def slow_swap():
            # Shutdown requested mid-cycle; the cycle still finishes.
            loop.shutdown.set()
            return original_swap()

        collector.swap = slow_swap
        await asyncio.wait_for(loop.run(), timeout=1)

        assert loop.cycles == 1
        names = [t.rsplit("/", 1)[1] for t, _, _ in client_factory.client.published]
        assert names[-1] == "root"

    asyncio.run(runner())


def test_availability_brackets_the_loop(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        session, registry, loop = await _setup(client_factory, power_supply)
        availability = AvailabilityManager.for_host(session, "box")
        loop.shutdown.set()

        await availability.run(loop)

        published = client_factory.client.published
        assert published == [
            ("system-mqtt/box/availability", "online", True),
            ("system-mqtt/box/availability", "offline", True),
        ]
        assert availability.topic == registry.state_topic("availability")
        assert session.state is SessionState.DISCONNECTED

    asyncio.run(runner())


def test_offline_is_published_when_the_loop_fails(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        session, _, loop = await _setup(client_factory, power_supply)
        availability = AvailabilityManager.for_host(session, "box")

        async def broken_run():
            raise RuntimeError("loop crashed")

        loop.run = broken_run
        client_factory.disconnect_error = True

        with pytest.raises(RuntimeError, match="loop crashed"):
            await availability.run(loop)

        offline = [p for _, p, _ in client_factory.client.published if p == "offline"]
        assert offline == ["offline"]
        assert client_factory.client.disconnect_calls == 1

        # A second close does nothing
        await availability.close()
        assert client_factory.client.disconnect_calls == 1

    asyncio.run(runner())


def test_offline_is_published_when_registration_fails(fake_host, client_factory, power_supply) -> None:
    async def runner() -> None:
        session, registry, loop = await _setup(client_factory, power_supply)
        availability = AvailabilityManager.for_host(session, "box")

        async def failing_startup():
            raise RegistrationError("Failed to register topic `root`")

        with pytest.raises(RegistrationError):
            await availability.run(loop, startup=failing_startup)

        published = client_factory.client.published
        assert ("system-mqtt/box/availability", "online", True) not in published
        assert published[-1] == ("system-mqtt/box/availability", "offline", True)
        assert session.state is SessionState.DISCONNECTED

    asyncio.run(runner())
