"""
Control loop driver.

``PlaybackRateController`` owns the session lifecycle for whichever media
target discovery currently reports: it binds, acquires an analysis session
in the background, runs one sample -> decide -> apply cycle per frame, and
tears everything down on target replacement, disable, or shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Mapping, Sequence
from typing import Any

import pydantic

from skipsilence.common.config import RuntimeConfig
from skipsilence.common.logging import get_logger, session_context
from skipsilence.common.retry import SleepFn, create_acquisition_retry

from .acquisition import AcquisitionChain, AcquisitionEnv, AcquisitionStrategy
from .calibrator import Calibrator
from .decision import RateDecisionEngine
from .heuristic import heuristic_is_quiet
from .protocols import (
    AudioBackend,
    Clock,
    ConfigBridge,
    EventListener,
    FrameScheduler,
    MediaTarget,
    TargetDiscovery,
)
from .sampler import VolumeSampler
from .session import AnalysisSession
from .types import AcquisitionErr, AcquisitionResult, AnalysisMode, ControllerConfig

logger = get_logger(__name__)


class MonotonicClock:
    """Wall clock in milliseconds, immune to system time changes."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


class AsyncioFrameScheduler:
    """Yields to the event loop for one display refresh."""

    def __init__(self, interval_s: float = 1.0 / 60.0) -> None:
        self.interval_s = interval_s

    async def wait_frame(self) -> None:
        await asyncio.sleep(self.interval_s)


class PlaybackRateController:
    """Speeds a media target up during sustained silence and back down on sound."""

    def __init__(
        self,
        discovery: TargetDiscovery,
        backend: AudioBackend,
        bridge: ConfigBridge,
        *,
        runtime: RuntimeConfig | None = None,
        defaults: ControllerConfig | None = None,
        clock: Clock | None = None,
        scheduler: FrameScheduler | None = None,
        sleep: SleepFn | None = None,
        strategies: Sequence[AcquisitionStrategy] | None = None,
    ) -> None:
        self._runtime = runtime or RuntimeConfig()
        self._discovery = discovery
        self._bridge = bridge
        self._clock = clock or MonotonicClock()
        self._scheduler = scheduler or AsyncioFrameScheduler(self._runtime.frame_interval_s)
        self._sleep = sleep or asyncio.sleep
        self._chain = AcquisitionChain(
            AcquisitionEnv(
                backend=backend,
                sleep=self._sleep,
                ready_timeout_s=self._runtime.ready_timeout_s,
                ready_poll_s=self._runtime.ready_poll_s,
            ),
            strategies,
        )

        self._config = bridge.load(defaults or ControllerConfig())
        self._unsubscribe_config = bridge.on_change(self._on_config_change)
        self._enabled_applied = self._config.enabled

        self._sampler = VolumeSampler()
        self._engine = RateDecisionEngine(enabled=self._config.enabled)
        self._calibrator: Calibrator | None = None

        self._target: MediaTarget | None = None
        self._session: AnalysisSession | None = None
        self._acquire_task: asyncio.Task[None] | None = None
        self._target_listeners: dict[str, EventListener] = {}
        self._release_requested = False
        self._acquire_requested = False
        self._rebind_requested = False

        self._stopping = False
        self._closed = False
        self._tick_count = 0
        self._rate_writes = 0
        self._last_loudness: float | None = None
        self._last_strategy: str | None = None

    # ------------------------------------------------------------------ state

    @property
    def config(self) -> ControllerConfig:
        return self._config

    @property
    def target(self) -> MediaTarget | None:
        return self._target

    @property
    def session(self) -> AnalysisSession | None:
        return self._session

    @property
    def acquiring(self) -> bool:
        return self._acquire_task is not None and not self._acquire_task.done()

    @property
    def rate_writes(self) -> int:
        return self._rate_writes

    @property
    def mode(self) -> AnalysisMode:
        if self._target is None:
            return AnalysisMode.UNBOUND
        if not self._config.enabled:
            return AnalysisMode.DISABLED
        if self._session is not None:
            return AnalysisMode.ANALYSIS
        return AnalysisMode.HEURISTIC

    def status(self) -> dict[str, Any]:
        """Snapshot for hosts that display what the controller is doing."""
        target = self._target
        return {
            "bound": target is not None,
            "target_id": target.target_id if target is not None else None,
            "mode": self.mode.value,
            "strategy": self._session.strategy if self._session is not None else None,
            "last_strategy": self._last_strategy,
            "acquiring": self.acquiring,
            "playback_rate": target.playback_rate if target is not None else None,
            "quiet_since_ms": self._engine.state.quiet_since,
            "last_loudness": self._last_loudness,
            "rate_writes": self._rate_writes,
            "ticks": self._tick_count,
            "config": self._config.to_wire(),
        }

    # -------------------------------------------------------------- lifecycle

    async def __aenter__(self) -> PlaybackRateController:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def run(self) -> None:
        """Wait for a target, then tick once per frame until ``stop()``."""
        try:
            target = await self._discover()
            if target is None:
                return
            await self._bind(target, reason="discovered")
            while not self._stopping:
                await self.tick()
                await self._scheduler.wait_frame()
        finally:
            await self.close()

    def stop(self) -> None:
        """Ask the loop to exit after the current frame."""
        self._stopping = True

    async def close(self) -> None:
        """Release the session and every subscription. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._stopping = True
        self._unsubscribe_config()
        await self._teardown(reason="shutdown", restore_rate=True)
        self._target = None
        logger.info(
            "controller.closed",
            ticks=self._tick_count,
            rate_writes=self._rate_writes,
        )

    async def _discover(self) -> MediaTarget | None:
        timeout_ms = self._runtime.discovery_timeout_s * 1000.0
        started = self._clock.now_ms()
        logger.info("controller.waiting_for_target")
        while not self._stopping:
            current = self._discovery.current()
            if current is not None:
                return current
            if timeout_ms > 0 and self._clock.now_ms() - started >= timeout_ms:
                logger.info("controller.no_target", waited_ms=self._clock.now_ms() - started)
                return None
            await self._scheduler.wait_frame()
        return None

    # ------------------------------------------------------------------- tick

    async def tick(self) -> None:
        """One sample -> decide -> apply cycle. Never raises for host failures."""
        self._tick_count += 1
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(
                "controller.tick_failed",
                error=str(exc),
                error_type=type(exc).__name__,
                tick=self._tick_count,
            )

    async def _tick(self) -> None:
        await self._follow_target()
        target = self._target
        if target is None:
            return

        config = self._config
        now = self._clock.now_ms()
        if config.enabled != self._enabled_applied:
            await self._apply_enabled(config.enabled)
        await self._handle_target_events(config)

        if not config.enabled:
            rate = self._engine.decide(False, now, target.playback_rate, config)
            if rate is not None:
                self._write_rate(target, rate, reason="disabled")
            return

        is_quiet = await self._verdict(target, now, config)
        rate = self._engine.decide(is_quiet, now, target.playback_rate, config)
        if rate is not None:
            self._write_rate(target, rate, reason="silence" if is_quiet else "sound")

    async def _verdict(self, target: MediaTarget, now: float, config: ControllerConfig) -> bool:
        session = self._session
        if session is None:
            return heuristic_is_quiet(target)

        try:
            loudness = session.read_loudness(self._sampler)
        except Exception as exc:
            await self._on_analysis_error(exc)
            return heuristic_is_quiet(target)

        smoothed = self._sampler.update_history(loudness)
        self._last_loudness = smoothed
        if self._tick_count % self._runtime.log_every_ticks == 0:
            logger.debug(
                "controller.loudness",
                loudness=round(loudness, 5),
                smoothed=round(smoothed, 5),
                threshold=config.silence_threshold,
            )

        if self._calibrator is not None and self._calibrator.active:
            updated = self._calibrator.feed(now, loudness, paused=target.paused, config=config)
            if updated is not None:
                self._apply_calibration(updated)
                config = self._config

        # quiet only while both the average and the newest reading are low, so
        # a single loud frame restores the natural rate immediately
        threshold = config.silence_threshold
        return smoothed < threshold and loudness < threshold

    def _write_rate(self, target: MediaTarget, rate: float, *, reason: str) -> None:
        previous = target.playback_rate
        try:
            target.playback_rate = rate
        except Exception as exc:
            logger.warning("controller.rate_write_failed", rate=rate, error=str(exc))
            return
        self._rate_writes += 1
        logger.info(
            "controller.rate_changed",
            from_rate=previous,
            to_rate=rate,
            reason=reason,
            mode=self.mode.value,
            position_s=round(target.current_time, 3),
        )

    # ---------------------------------------------------------- target binding

    async def _follow_target(self) -> None:
        current = self._discovery.current()
        if current is not self._target:
            await self._bind(current, reason="replaced" if self._target is not None else "discovered")
        elif self._rebind_requested and current is not None:
            await self._bind(current, reason="source_changed")

    async def _bind(self, target: MediaTarget | None, *, reason: str) -> None:
        previous = self._target
        await self._teardown(reason=reason, restore_rate=previous is not target)
        self._target = target
        self._rebind_requested = False
        self._release_requested = False
        self._acquire_requested = False
        self._engine.reset()
        self._sampler.reset()
        self._last_loudness = None
        if target is None:
            logger.info("controller.target_lost", reason=reason)
            return
        self._subscribe(target)
        logger.info(
            "controller.target_bound",
            target_id=target.target_id,
            reason=reason,
            previous_target_id=previous.target_id if previous is not None else None,
        )
        if self._config.enabled:
            self._start_acquisition(target)

    async def _teardown(self, *, reason: str, restore_rate: bool) -> None:
        await self._cancel_acquisition()
        await self._release_session(reason=reason)
        target = self._target
        if target is None:
            return
        self._unsubscribe(target)
        if restore_rate and self._is_fast(target):
            self._write_rate(target, self._config.natural_rate, reason=reason)

    def _is_fast(self, target: MediaTarget) -> bool:
        return target.playback_rate == self._config.fast_rate != self._config.natural_rate

    def _subscribe(self, target: MediaTarget) -> None:
        def request_release() -> None:
            self._release_requested = True

        def request_acquire() -> None:
            self._acquire_requested = True

        def request_rebind() -> None:
            self._rebind_requested = True

        self._target_listeners = {
            "ended": request_release,
            "error": request_release,
            "play": request_acquire,
            "loadeddata": request_acquire,
            "emptied": request_rebind,
        }
        for event, listener in self._target_listeners.items():
            target.add_event_listener(event, listener)

    def _unsubscribe(self, target: MediaTarget) -> None:
        for event, listener in self._target_listeners.items():
            with contextlib.suppress(KeyError, ValueError):
                target.remove_event_listener(event, listener)
        self._target_listeners = {}

    async def _handle_target_events(self, config: ControllerConfig) -> None:
        if self._release_requested:
            self._release_requested = False
            await self._cancel_acquisition()
            await self._release_session(reason="target_ended")
        if self._acquire_requested:
            self._acquire_requested = False
            if config.enabled and self._session is None and not self.acquiring and self._target is not None:
                self._start_acquisition(self._target)

    async def _apply_enabled(self, enabled: bool) -> None:
        self._enabled_applied = enabled
        if enabled:
            logger.info("controller.enabled")
            if self._target is not None and self._session is None:
                self._start_acquisition(self._target)
            return
        logger.info("controller.disabled")
        await self._cancel_acquisition()
        await self._release_session(reason="disabled")

    # ------------------------------------------------------------ acquisition

    def _start_acquisition(self, target: MediaTarget, *, delay_s: float = 0.0) -> None:
        if self.acquiring or self._stopping:
            return
        self._acquire_task = asyncio.create_task(
            self._acquire(target, delay_s),
            name=f"skipsilence-acquire-{target.target_id}",
        )

    async def _acquire(self, target: MediaTarget, delay_s: float) -> None:
        with session_context(target.target_id):
            if delay_s > 0:
                await self._sleep(delay_s)
            retrying = create_acquisition_retry(
                lambda result: not result.ok,
                name="analysis_acquisition",
                initial_delay=self._runtime.retry_initial_s,
                max_delay=self._runtime.retry_max_s,
                max_attempts=self._runtime.retry_attempts,
                sleep=self._sleep,
            )
            try:
                result: AcquisitionResult = await retrying(self._chain.acquire, target)
            except Exception as exc:
                logger.warning(
                    "controller.acquisition_crashed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return
            await self._install(target, result)

    async def _install(self, target: MediaTarget, result: AcquisitionResult) -> None:
        if isinstance(result, AcquisitionErr):
            logger.info(
                "controller.heuristic_mode",
                target_id=target.target_id,
                reason=result.reason.value,
            )
            return
        session = result.session
        if target is not self._target or not self._config.enabled or self._stopping:
            logger.info("controller.stale_session_discarded", strategy=session.strategy)
            await session.release()
            return
        previous, self._session = self._session, session
        if previous is not None:
            await previous.release()
        self._last_strategy = session.strategy
        self._sampler.reset()
        if not self._config.calibrated:
            self._calibrator = Calibrator()
        logger.info(
            "controller.analysis_live",
            target_id=target.target_id,
            strategy=session.strategy,
            calibrating=self._calibrator is not None,
        )

    async def _cancel_acquisition(self) -> None:
        task, self._acquire_task = self._acquire_task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _release_session(self, *, reason: str) -> None:
        if self._calibrator is not None:
            self._calibrator.abandon()
            self._calibrator = None
        session, self._session = self._session, None
        if session is None:
            return
        logger.info("controller.session_teardown", strategy=session.strategy, reason=reason)
        await session.release()

    async def _on_analysis_error(self, exc: Exception) -> None:
        logger.warning(
            "controller.analysis_error",
            error=str(exc),
            error_type=type(exc).__name__,
            retry_in_s=self._runtime.retry_initial_s,
        )
        await self._release_session(reason="analysis_error")
        if self._target is not None:
            self._start_acquisition(self._target, delay_s=self._runtime.retry_initial_s)

    # ------------------------------------------------------------------ config

    def _on_config_change(self, changes: Mapping[str, Any]) -> None:
        try:
            self._config = self._config.with_changes(dict(changes))
        except pydantic.ValidationError as exc:
            logger.warning("controller.config_rejected", changes=dict(changes), error=str(exc))
            return
        logger.info("controller.config_changed", fields=sorted(changes))

    def _apply_calibration(self, updated: ControllerConfig) -> None:
        self._config = updated
        try:
            self._bridge.save(updated)
        except Exception as exc:
            logger.warning("controller.calibration_save_failed", error=str(exc))


__all__ = ["AsyncioFrameScheduler", "MonotonicClock", "PlaybackRateController"]
