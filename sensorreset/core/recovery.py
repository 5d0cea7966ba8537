"""Multi-phase ghost-pairing recovery.

A recovery run walks five fixed phases, each a barrier that waits for all of
its per-target work to settle before the next one starts:

1. force-disconnect connected targets, then wait for the transport to settle
2. forget every target
3. sweep platform pairing records and locally persisted state
4. cancel pending deferred callbacks
5. wait for completion and return the report

Every per-target call and every sweep sub-step has its own failure boundary.
Failures land in the report; only an unregistered role raises. A run cannot
be cancelled once started.
"""

from __future__ import annotations

import asyncio
import gc
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from sensorreset.core.device import Device
from sensorreset.core.errors import NoMatchingDeviceError, PlatformSweepUnavailable
from sensorreset.core.model import (
    PhaseOutcome,
    PhaseStatus,
    PlatformCacheEntry,
    RecoveryReport,
    RecoveryRequest,
    SweepStatus,
    SweepStepResult,
    TargetReport,
    TargetStage,
)
from sensorreset.core.registry import DeviceRegistry
from sensorreset.core.scheduler import CallbackScheduler
from sensorreset.platform.base import PlatformSweeper

# Empirical platform timings; no algorithmic reason for these exact values.
DEFAULT_DISCONNECT_SETTLE_S = 0.5
DEFAULT_COMPLETION_SETTLE_S = 1.0
DEFAULT_SCHEDULER_HANDLE_LIMIT = 10000
DEFAULT_PERSISTED_KEY_PATTERNS = ("bluetooth", "ble", "device")
DEFAULT_DATABASE_PATTERNS = ("bluetooth", "ble")

PERSISTENT_ISSUE_HINT = (
    "If issues persist, close and reopen the app, or restart the platform Bluetooth stack."
)

LOGGER = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RecoveryTimings:
    disconnect_settle_s: float = DEFAULT_DISCONNECT_SETTLE_S
    completion_settle_s: float = DEFAULT_COMPLETION_SETTLE_S


@dataclass(frozen=True)
class SweepPolicy:
    enabled: bool = True
    persisted_key_patterns: tuple[str, ...] = DEFAULT_PERSISTED_KEY_PATTERNS
    database_patterns: tuple[str, ...] = DEFAULT_DATABASE_PATTERNS
    scheduler_handle_limit: int = DEFAULT_SCHEDULER_HANDLE_LIMIT


def contains_any(patterns: Iterable[str]) -> Callable[[str], bool]:
    """Case-insensitive substring predicate."""
    lowered = tuple(p.lower() for p in patterns if p)

    def _match(name: str) -> bool:
        name = name.lower()
        return any(p in name for p in lowered)

    return _match


@dataclass
class _TargetProgress:
    device: Device
    stage: TargetStage = TargetStage.TARGETED
    disconnect: PhaseOutcome = field(default_factory=lambda: PhaseOutcome(PhaseStatus.SKIPPED))
    forget: PhaseOutcome = field(default_factory=lambda: PhaseOutcome(PhaseStatus.SKIPPED))

    def freeze(self) -> TargetReport:
        return TargetReport(
            role=self.device.role,
            display_name=self.device.display_name,
            disconnect=self.disconnect,
            forget=self.forget,
            stage=self.stage,
        )


class RecoveryOrchestrator:
    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        sweeper: PlatformSweeper | None = None,
        scheduler: CallbackScheduler | None = None,
        timings: RecoveryTimings | None = None,
        policy: SweepPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.sweeper = sweeper
        self.scheduler = scheduler
        self.timings = timings or RecoveryTimings()
        self.policy = policy or SweepPolicy()
        self._sleep = sleep

    async def recover(self, request: RecoveryRequest) -> RecoveryReport:
        LOGGER.info("Starting comprehensive Bluetooth reset for: %s", request.label)

        targets = self.registry.resolve(request)
        if not targets:
            if request.target_role is not None:
                raise NoMatchingDeviceError(
                    f"No managed device is registered for role '{request.target_role.value}'"
                )
            return RecoveryReport(request=request)

        progress = [_TargetProgress(device=device) for device in targets]

        LOGGER.info("Step 1: Force disconnecting active connections...")
        await self._disconnect_phase(progress)

        LOGGER.info("Step 2: Clearing cached device references...")
        await self._forget_phase(progress)

        LOGGER.info("Step 3: Sweeping platform pairing and storage caches...")
        sweep = await self._sweep_phase()
        for item in progress:
            item.stage = TargetStage.SWEPT_OR_SKIPPED

        LOGGER.info("Step 4: Releasing pending deferred callbacks...")
        cleared = self._scheduler_phase()

        await self._sleep(self.timings.completion_settle_s)
        for item in progress:
            item.stage = TargetStage.DONE

        report = RecoveryReport(
            request=request,
            targets=tuple(item.freeze() for item in progress),
            sweep=tuple(sweep),
            scheduler_handles_cleared=cleared,
        )
        LOGGER.info("Comprehensive Bluetooth reset completed for: %s", request.label)
        LOGGER.info(PERSISTENT_ISSUE_HINT)
        return report

    async def _disconnect_phase(self, progress: Sequence[_TargetProgress]) -> None:
        async def _disconnect(item: _TargetProgress) -> bool:
            device = item.device
            try:
                if not device.is_connected():
                    item.disconnect = PhaseOutcome(PhaseStatus.SKIPPED)
                    return False
                await device.disconnect()
            except Exception as exc:
                LOGGER.error("Failed to disconnect: %s: %s", device.display_name, exc)
                item.disconnect = PhaseOutcome(PhaseStatus.FAILED, error=str(exc) or type(exc).__name__)
                return True
            finally:
                item.stage = TargetStage.DISCONNECTED
            item.disconnect = PhaseOutcome(PhaseStatus.OK)
            return True

        attempted = await _settle_all(_disconnect(item) for item in progress)
        if any(result is True for result in attempted):
            await self._sleep(self.timings.disconnect_settle_s)

    async def _forget_phase(self, progress: Sequence[_TargetProgress]) -> None:
        async def _forget(item: _TargetProgress) -> None:
            device = item.device
            try:
                await device.forget()
            except Exception as exc:
                LOGGER.error("Failed to forget device: %s: %s", device.display_name, exc)
                item.forget = PhaseOutcome(PhaseStatus.FAILED, error=str(exc) or type(exc).__name__)
            else:
                item.forget = PhaseOutcome(PhaseStatus.OK)
            finally:
                item.stage = TargetStage.FORGOTTEN

        await _settle_all(_forget(item) for item in progress)

    async def _sweep_phase(self) -> list[SweepStepResult]:
        if not self.policy.enabled or self.sweeper is None:
            LOGGER.debug("Platform sweep skipped: no sweeper configured or sweeping disabled")
            return []

        sweeper = self.sweeper
        results: list[SweepStepResult] = []

        entries = await _step(results, "pairings.list", sweeper.list_cached_pairings)
        if entries:
            per_entry = await _settle_all(_sweep_entry(sweeper, entry) for entry in entries)
            for entry_results in per_entry:
                if isinstance(entry_results, list):
                    results.extend(entry_results)

        key_predicate = contains_any(self.policy.persisted_key_patterns)
        await _step(results, "storage.keys", sweeper.purge_matching_persisted_keys, key_predicate)
        await _step(results, "storage.caches", sweeper.purge_structured_caches)

        databases = await _step(results, "databases.list", sweeper.list_structured_databases)
        if databases:
            db_predicate = contains_any(self.policy.database_patterns)
            for name in databases:
                if db_predicate(name):
                    await _step(results, f"databases.delete:{name}", sweeper.delete_database, name)

        return results

    def _scheduler_phase(self) -> int:
        cleared = 0
        try:
            if self.scheduler is not None:
                cleared = self.scheduler.clear_range(1, self.policy.scheduler_handle_limit)
            gc.collect()
        except Exception as exc:
            LOGGER.warning("Cleanup step had issues: %s", exc)
        return cleared


async def _settle_all(coros: Iterable[Awaitable[Any]]) -> list[Any]:
    """Run every awaitable concurrently and collect results instead of the first error."""
    return await asyncio.gather(*coros, return_exceptions=True)


async def _step(
    results: list[SweepStepResult],
    name: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
) -> Any:
    """Run one sweep sub-step inside its own failure boundary and record the outcome.

    ``None``/``False`` results and ``PlatformSweepUnavailable`` mean the platform
    lacks the capability. Returns the call's value, or ``None`` on failure.
    """
    try:
        value = await func(*args)
    except PlatformSweepUnavailable as exc:
        LOGGER.debug("Sweep step %s unavailable: %s", name, exc)
        results.append(SweepStepResult(step=name, status=SweepStatus.UNSUPPORTED, detail=str(exc)))
        return None
    except Exception as exc:
        LOGGER.error("Sweep step %s failed: %s", name, exc)
        results.append(
            SweepStepResult(step=name, status=SweepStatus.FAILED, detail=str(exc) or type(exc).__name__)
        )
        return None

    if value is None or value is False:
        LOGGER.debug("Sweep step %s unsupported on this platform", name)
        results.append(SweepStepResult(step=name, status=SweepStatus.UNSUPPORTED))
        return value

    results.append(SweepStepResult(step=name, status=SweepStatus.OK, affected=_affected_count(value)))
    return value


async def _sweep_entry(sweeper: PlatformSweeper, entry: PlatformCacheEntry) -> list[SweepStepResult]:
    results: list[SweepStepResult] = []
    if entry.connected:
        await _step(results, f"pairing.disconnect:{entry.id}", sweeper.disconnect_if_live, entry)
    await _step(results, f"pairing.forget:{entry.id}", sweeper.forget_if_supported, entry)
    return results


def _affected_count(value: Any) -> int:
    if isinstance(value, bool):
        return 1
    if isinstance(value, int):
        return value
    try:
        return len(value)
    except TypeError:
        return 1
