from __future__ import annotations

import asyncio

import pytest

from sensorreset.core.errors import DisconnectError, ForgetError, NoMatchingDeviceError
from sensorreset.core.model import (
    DeviceRole,
    PhaseStatus,
    PlatformCacheEntry,
    RecoveryRequest,
    SweepStatus,
    TargetStage,
)
from sensorreset.core.recovery import RecoveryOrchestrator, RecoveryTimings, SweepPolicy
from sensorreset.core.registry import DeviceRegistry
from sensorreset.core.scheduler import CallbackScheduler
from sensorreset.platform.base import NullPlatformSweeper


class FakeDevice:
    def __init__(
        self,
        role: DeviceRole,
        events: list[str],
        *,
        connected: bool = False,
        fail_disconnect: bool = False,
        fail_forget: bool = False,
        delay_s: float = 0.0,
    ) -> None:
        self._role = role
        self.events = events
        self.connected = connected
        self.fail_disconnect = fail_disconnect
        self.fail_forget = fail_forget
        self.delay_s = delay_s
        self.known = True
        self.disconnect_calls = 0
        self.forget_calls = 0

    @property
    def role(self) -> DeviceRole:
        return self._role

    @property
    def display_name(self) -> str:
        return self._role.default_name

    def is_connected(self) -> bool:
        return self.connected

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.events.append(f"disconnect:start:{self._role.value}")
        await asyncio.sleep(self.delay_s)
        if self.fail_disconnect:
            self.events.append(f"disconnect:fail:{self._role.value}")
            raise DisconnectError("link busy")
        self.connected = False
        self.events.append(f"disconnect:end:{self._role.value}")

    async def forget(self) -> None:
        self.forget_calls += 1
        self.events.append(f"forget:{self._role.value}")
        if self.fail_forget:
            raise ForgetError("bond locked")
        self.known = False


class FakeSweeper:
    def __init__(self, events: list[str]) -> None:
        self.events = events
        self.entries = [
            PlatformCacheEntry(id="AA:BB:CC:00:00:01", name="HRM-Pro", connected=True),
            PlatformCacheEntry(id="AA:BB:CC:00:00:02", name="KICKR", connected=False),
        ]
        self.broken_entry: str | None = None
        self.keys = {"ble_last_hrm": 1, "theme": "dark", "DeviceCache": 2}
        self.databases = ["bluetooth-devices.db", "workouts.db"]

    async def list_cached_pairings(self):
        self.events.append("sweep:list")
        return list(self.entries)

    async def disconnect_if_live(self, entry):
        self.events.append(f"sweep:disconnect:{entry.id}")
        if entry.id == self.broken_entry:
            raise RuntimeError("gatt error")
        return True

    async def forget_if_supported(self, entry):
        self.events.append(f"sweep:forget:{entry.id}")
        return True

    async def purge_matching_persisted_keys(self, predicate):
        doomed = [k for k in self.keys if predicate(k)]
        for key in doomed:
            del self.keys[key]
        return len(doomed)

    async def purge_structured_caches(self):
        return 3

    async def list_structured_databases(self):
        return list(self.databases)

    async def delete_database(self, name):
        self.databases.remove(name)
        return True


def _orchestrator(devices, *, sweeper=None, scheduler=None, events=None, policy=None):
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        if events is not None:
            events.append(f"sleep:{seconds}")

    orchestrator = RecoveryOrchestrator(
        DeviceRegistry(devices),
        sweeper=sweeper,
        scheduler=scheduler,
        timings=RecoveryTimings(disconnect_settle_s=0.5, completion_settle_s=1.0),
        policy=policy,
        sleep=fake_sleep,
    )
    return orchestrator, sleeps


@pytest.mark.asyncio
async def test_single_role_touches_only_that_device() -> None:
    events: list[str] = []
    hrm = FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True)
    power = FakeDevice(DeviceRole.POWER_METER, events, connected=False)
    orchestrator, sleeps = _orchestrator([hrm, power], events=events)

    report = await orchestrator.recover(RecoveryRequest.for_role(DeviceRole.HEART_RATE_MONITOR))

    assert hrm.disconnect_calls == 1
    assert hrm.forget_calls == 1
    assert power.disconnect_calls == 0
    assert power.forget_calls == 0
    assert events.index("forget:heart_rate_monitor") > events.index("disconnect:end:heart_rate_monitor")
    assert events.index("forget:heart_rate_monitor") > events.index("sleep:0.5")

    assert [t.role for t in report.targets] == [DeviceRole.HEART_RATE_MONITOR]
    target = report.target(DeviceRole.HEART_RATE_MONITOR)
    assert target is not None
    assert target.disconnect.status is PhaseStatus.OK
    assert target.forget.status is PhaseStatus.OK
    assert target.stage is TargetStage.DONE
    assert report.succeeded
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio
async def test_all_disconnects_only_connected_and_forgets_everything() -> None:
    events: list[str] = []
    devices = [
        FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True),
        FakeDevice(DeviceRole.POWER_METER, events, connected=True),
        FakeDevice(DeviceRole.MOXY, events, connected=False),
    ]
    orchestrator, _ = _orchestrator(devices)

    report = await orchestrator.recover(RecoveryRequest.all())

    assert sum(d.disconnect_calls for d in devices) == 2
    assert sum(d.forget_calls for d in devices) == 3
    assert len(report.targets) == 3
    moxy = report.target(DeviceRole.MOXY)
    assert moxy is not None
    assert moxy.disconnect.status is PhaseStatus.SKIPPED
    assert moxy.disconnect.succeeded


@pytest.mark.asyncio
async def test_disconnect_failure_still_forgets_same_and_other_targets() -> None:
    events: list[str] = []
    broken = FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True, fail_disconnect=True)
    healthy = FakeDevice(DeviceRole.POWER_METER, events, connected=True)
    orchestrator, _ = _orchestrator([broken, healthy])

    report = await orchestrator.recover(RecoveryRequest.all())

    assert healthy.disconnect_calls == 1
    assert broken.forget_calls == 1
    assert healthy.forget_calls == 1

    failed = report.target(DeviceRole.HEART_RATE_MONITOR)
    assert failed is not None
    assert failed.disconnect.status is PhaseStatus.FAILED
    assert failed.disconnect.error == "link busy"
    assert failed.forget.status is PhaseStatus.OK
    assert failed.stage is TargetStage.DONE
    assert report.failed_targets == (failed,)
    assert not report.succeeded


@pytest.mark.asyncio
async def test_forget_failure_is_recorded_not_raised() -> None:
    events: list[str] = []
    device = FakeDevice(DeviceRole.CORE_TEMP, events, fail_forget=True)
    orchestrator, _ = _orchestrator([device])

    report = await orchestrator.recover(RecoveryRequest.for_role(DeviceRole.CORE_TEMP))

    target = report.target(DeviceRole.CORE_TEMP)
    assert target is not None
    assert target.forget.status is PhaseStatus.FAILED
    assert target.forget.error == "bond locked"


@pytest.mark.asyncio
async def test_no_forget_starts_before_every_disconnect_settles() -> None:
    events: list[str] = []
    devices = [
        FakeDevice(DeviceRole.CONTROLLABLE, events, connected=True, delay_s=0.03),
        FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True, delay_s=0.0),
        FakeDevice(DeviceRole.POWER_METER, events, connected=True, delay_s=0.01, fail_disconnect=True),
    ]
    orchestrator, _ = _orchestrator(devices)

    await orchestrator.recover(RecoveryRequest.all())

    settled = [i for i, e in enumerate(events) if e.startswith(("disconnect:end", "disconnect:fail"))]
    forgets = [i for i, e in enumerate(events) if e.startswith("forget:")]
    assert len(settled) == 3
    assert len(forgets) == 3
    assert max(settled) < min(forgets)


@pytest.mark.asyncio
async def test_disconnects_run_concurrently() -> None:
    events: list[str] = []
    devices = [
        FakeDevice(DeviceRole.CONTROLLABLE, events, connected=True, delay_s=0.02),
        FakeDevice(DeviceRole.POWER_METER, events, connected=True, delay_s=0.02),
    ]
    orchestrator, _ = _orchestrator(devices)

    await orchestrator.recover(RecoveryRequest.all())

    starts = [i for i, e in enumerate(events) if e.startswith("disconnect:start")]
    ends = [i for i, e in enumerate(events) if e.startswith("disconnect:end")]
    assert max(starts) < min(ends)


@pytest.mark.asyncio
async def test_unregistered_role_raises_without_side_effects() -> None:
    events: list[str] = []
    hrm = FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True)
    sweeper = FakeSweeper(events)
    orchestrator, sleeps = _orchestrator([hrm], sweeper=sweeper, events=events)

    with pytest.raises(NoMatchingDeviceError):
        await orchestrator.recover(RecoveryRequest.for_role(DeviceRole.MOXY))

    assert events == []
    assert sleeps == []
    assert hrm.disconnect_calls == 0
    assert sweeper.keys == {"ble_last_hrm": 1, "theme": "dark", "DeviceCache": 2}


@pytest.mark.asyncio
async def test_all_on_empty_registry_returns_empty_report() -> None:
    orchestrator, sleeps = _orchestrator([])

    report = await orchestrator.recover(RecoveryRequest.all())

    assert report.targets == ()
    assert report.sweep == ()
    assert sleeps == []


@pytest.mark.asyncio
async def test_known_but_clean_role_is_distinguishable_from_unknown_role() -> None:
    events: list[str] = []
    device = FakeDevice(DeviceRole.SPEED_CADENCE_SENSOR, events, connected=False)
    orchestrator, sleeps = _orchestrator([device])

    report = await orchestrator.recover(RecoveryRequest.for_role(DeviceRole.SPEED_CADENCE_SENSOR))

    assert report.needed_action is False
    assert device.forget_calls == 1
    # No disconnect was attempted, so no disconnect settle wait either.
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_repeated_recovery_reaches_same_end_state() -> None:
    events: list[str] = []
    device = FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True)
    orchestrator, _ = _orchestrator([device])

    first = await orchestrator.recover(RecoveryRequest.all())
    second = await orchestrator.recover(RecoveryRequest.all())

    assert device.connected is False
    assert device.known is False
    assert first.target(DeviceRole.HEART_RATE_MONITOR).disconnect.status is PhaseStatus.OK
    assert second.target(DeviceRole.HEART_RATE_MONITOR).disconnect.status is PhaseStatus.SKIPPED
    assert second.succeeded


@pytest.mark.asyncio
async def test_sweep_runs_after_device_phases_and_records_results() -> None:
    events: list[str] = []
    device = FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True)
    sweeper = FakeSweeper(events)
    orchestrator, _ = _orchestrator([device], sweeper=sweeper)

    report = await orchestrator.recover(RecoveryRequest.all())

    assert events.index("sweep:list") > events.index("forget:heart_rate_monitor")
    assert "sweep:disconnect:AA:BB:CC:00:00:01" in events
    assert "sweep:disconnect:AA:BB:CC:00:00:02" not in events
    assert "sweep:forget:AA:BB:CC:00:00:02" in events
    assert sweeper.keys == {"theme": "dark"}
    assert sweeper.databases == ["workouts.db"]

    steps = {s.step: s for s in report.sweep}
    assert steps["pairings.list"].affected == 2
    assert steps["storage.keys"].affected == 2
    assert steps["storage.caches"].affected == 3
    assert steps["databases.delete:bluetooth-devices.db"].status is SweepStatus.OK
    assert "databases.delete:workouts.db" not in steps
    assert report.sweep_failures == ()


@pytest.mark.asyncio
async def test_sweep_record_failure_does_not_stop_other_records_or_steps() -> None:
    events: list[str] = []
    sweeper = FakeSweeper(events)
    sweeper.entries[1] = PlatformCacheEntry(id="AA:BB:CC:00:00:02", name="KICKR", connected=True)
    sweeper.broken_entry = "AA:BB:CC:00:00:01"
    orchestrator, _ = _orchestrator([FakeDevice(DeviceRole.CONTROLLABLE, events)], sweeper=sweeper)

    report = await orchestrator.recover(RecoveryRequest.all())

    assert "sweep:disconnect:AA:BB:CC:00:00:02" in events
    assert "sweep:forget:AA:BB:CC:00:00:01" in events
    assert [s.step for s in report.sweep_failures] == ["pairing.disconnect:AA:BB:CC:00:00:01"]
    assert report.sweep_failures[0].detail == "gatt error"
    assert sweeper.keys == {"theme": "dark"}
    assert report.targets[0].succeeded


@pytest.mark.asyncio
async def test_unavailable_sweep_capabilities_are_not_failures() -> None:
    events: list[str] = []
    orchestrator, _ = _orchestrator(
        [FakeDevice(DeviceRole.POWER_METER, events)],
        sweeper=NullPlatformSweeper(),
    )

    report = await orchestrator.recover(RecoveryRequest.all())

    assert report.sweep
    assert all(s.status is SweepStatus.UNSUPPORTED for s in report.sweep)
    assert report.sweep_failures == ()
    assert report.succeeded


@pytest.mark.asyncio
async def test_sweep_step_exception_is_a_failure() -> None:
    events: list[str] = []

    class ExplodingSweeper(NullPlatformSweeper):
        async def purge_structured_caches(self):
            raise PermissionError("read-only cache")

    orchestrator, _ = _orchestrator([FakeDevice(DeviceRole.MOXY, events)], sweeper=ExplodingSweeper())

    report = await orchestrator.recover(RecoveryRequest.all())

    assert [s.step for s in report.sweep_failures] == ["storage.caches"]
    assert not report.succeeded


@pytest.mark.asyncio
async def test_disabled_sweep_skips_platform() -> None:
    events: list[str] = []
    sweeper = FakeSweeper(events)
    orchestrator, _ = _orchestrator(
        [FakeDevice(DeviceRole.MOXY, events)],
        sweeper=sweeper,
        policy=SweepPolicy(enabled=False),
    )

    report = await orchestrator.recover(RecoveryRequest.all())

    assert report.sweep == ()
    assert "sweep:list" not in events


@pytest.mark.asyncio
async def test_scheduler_phase_cancels_pending_callbacks() -> None:
    events: list[str] = []
    scheduler = CallbackScheduler()
    fired: list[str] = []
    for _ in range(3):
        scheduler.call_later(60, fired.append, "late")
    orchestrator, _ = _orchestrator(
        [FakeDevice(DeviceRole.HEART_RATE_MONITOR, events)],
        scheduler=scheduler,
    )

    report = await orchestrator.recover(RecoveryRequest.all())

    assert report.scheduler_handles_cleared == 3
    assert scheduler.pending == ()
    assert fired == []


@pytest.mark.asyncio
async def test_report_dict_shape() -> None:
    events: list[str] = []
    orchestrator, _ = _orchestrator([FakeDevice(DeviceRole.HEART_RATE_MONITOR, events, connected=True)])

    report = await orchestrator.recover(RecoveryRequest.for_role(DeviceRole.HEART_RATE_MONITOR))
    data = report.as_dict()

    assert data["request"] == "heart_rate_monitor"
    assert data["succeeded"] is True
    assert data["targets"] == [
        {
            "role": "heart_rate_monitor",
            "name": "Heart Rate Monitor",
            "stage": "done",
            "disconnect": {"status": "ok", "error": None},
            "forget": {"status": "ok", "error": None},
        }
    ]


@pytest.mark.asyncio
async def test_sweep_value_without_length_is_counted_once() -> None:
    events: list[str] = []

    class OpaqueSweeper(NullPlatformSweeper):
        async def purge_structured_caches(self):
            return object()

    orchestrator, _ = _orchestrator([FakeDevice(DeviceRole.MOXY, events)], sweeper=OpaqueSweeper())

    report = await orchestrator.recover(RecoveryRequest.all())

    steps = {s.step: s for s in report.sweep}
    assert steps["storage.caches"].status is SweepStatus.OK
    assert steps["storage.caches"].affected == 1
    assert report.sweep_failures == ()
