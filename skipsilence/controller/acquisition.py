"""
Acquisition strategy chain.

Obtains a live analysis buffer from a media target, trying in order:

1. direct tap of the element's own audio output,
2. an analysis graph over the element's captured output stream,
3. a hidden, muted shadow element loaded from the same source and kept
   in step with the target.

Every attempt returns a tagged ``AcquisitionResult``. A failed attempt
releases everything it created before the next strategy runs.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from skipsilence.common.logging import get_logger
from skipsilence.common.retry import SleepFn

from .protocols import AnalyserNode, AudioBackend, AudioContext, AudioNode, MediaTarget
from .session import AnalysisSession, GraphResources, ShadowSync
from .types import (
    ANALYSER_FFT_SIZE,
    ANALYSER_SMOOTHING,
    HAVE_CURRENT_DATA,
    AcquisitionErr,
    AcquisitionFailure,
    AcquisitionOk,
    AcquisitionResult,
    AudioGraphError,
    CaptureUnsupportedError,
    SourceClaimedError,
)

logger = get_logger(__name__)


@dataclass
class AcquisitionEnv:
    """Collaborators and timing shared by every strategy."""

    backend: AudioBackend
    sleep: SleepFn = asyncio.sleep
    ready_timeout_s: float = 5.0
    ready_poll_s: float = 0.1
    fft_size: int = ANALYSER_FFT_SIZE
    smoothing: float = ANALYSER_SMOOTHING


async def wait_until_ready(
    target: MediaTarget,
    sleep: SleepFn,
    *,
    timeout_s: float,
    poll_s: float,
) -> bool:
    """Poll until the element has current data or the timeout elapses."""
    if target.ready_state >= HAVE_CURRENT_DATA:
        return True
    waited = 0.0
    while waited < timeout_s:
        await sleep(poll_s)
        waited += poll_s
        if target.ready_state >= HAVE_CURRENT_DATA:
            return True
    return False


def _failure_for(exc: Exception) -> AcquisitionFailure:
    if isinstance(exc, SourceClaimedError):
        return AcquisitionFailure.SOURCE_ALREADY_CLAIMED
    if isinstance(exc, CaptureUnsupportedError):
        return AcquisitionFailure.CAPTURE_UNSUPPORTED
    return AcquisitionFailure.GRAPH_ERROR


class AcquisitionStrategy(ABC):
    """One way of obtaining an analysable signal from a media target."""

    name: str = "strategy"

    async def attempt(self, target: MediaTarget, env: AcquisitionEnv) -> AcquisitionResult:
        resources = GraphResources()
        try:
            result = await self._build(target, env, resources)
        except asyncio.CancelledError:
            await resources.release()
            raise
        except AudioGraphError as exc:
            result = AcquisitionErr(_failure_for(exc), str(exc), self.name)
        except Exception as exc:
            logger.warning(
                "acquisition.host_error",
                strategy=self.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            result = AcquisitionErr(AcquisitionFailure.GRAPH_ERROR, str(exc), self.name)

        if not result.ok:
            await resources.release()
        return result

    @abstractmethod
    async def _build(
        self, target: MediaTarget, env: AcquisitionEnv, resources: GraphResources
    ) -> AcquisitionResult:
        """Build the graph, registering each created resource in ``resources``."""

    def _fail(self, reason: AcquisitionFailure, detail: str = "") -> AcquisitionErr:
        return AcquisitionErr(reason, detail, self.name)

    async def _open_context(
        self, env: AcquisitionEnv, resources: GraphResources
    ) -> AudioContext | AcquisitionErr:
        try:
            context = env.backend.create_context()
        except AudioGraphError as exc:
            return self._fail(AcquisitionFailure.CONTEXT_UNAVAILABLE, str(exc))
        resources.context = context
        if context.state == "suspended":
            await context.resume()
            logger.debug("acquisition.context_resumed", strategy=self.name, state=context.state)
        # a suspended context yields zeros, which would read as silence
        if context.state != "running":
            return self._fail(
                AcquisitionFailure.CONTEXT_UNAVAILABLE, f"context state {context.state}"
            )
        return context

    def _attach_analyser(
        self,
        context: AudioContext,
        source: AudioNode,
        env: AcquisitionEnv,
        resources: GraphResources,
        *,
        audible: bool,
    ) -> AnalyserNode:
        analyser = context.create_analyser()
        resources.nodes.append(analyser)
        analyser.fft_size = env.fft_size
        analyser.smoothing_time_constant = env.smoothing
        source.connect(analyser)
        if audible:
            analyser.connect(context.destination)
        return analyser

    def _commit(
        self, target: MediaTarget, analyser: AnalyserNode, resources: GraphResources
    ) -> AcquisitionOk:
        return AcquisitionOk(AnalysisSession(target, self.name, analyser, resources))


class DirectTapStrategy(AcquisitionStrategy):
    """Route the element's own output through an analyser to the speakers."""

    name = "direct_tap"

    async def _build(
        self, target: MediaTarget, env: AcquisitionEnv, resources: GraphResources
    ) -> AcquisitionResult:
        if env.backend.is_source_claimed(target):
            return self._fail(
                AcquisitionFailure.SOURCE_ALREADY_CLAIMED,
                "element already feeds another audio graph",
            )
        context = await self._open_context(env, resources)
        if isinstance(context, AcquisitionErr):
            return context
        source = context.create_media_element_source(target)
        resources.nodes.append(source)
        # the element now plays only through the graph, so the tap must reach
        # the destination exactly once
        analyser = self._attach_analyser(context, source, env, resources, audible=True)
        return self._commit(target, analyser, resources)


class StreamCaptureStrategy(AcquisitionStrategy):
    """Analyse a captured copy of the output; the element keeps playing itself."""

    name = "stream_capture"

    async def _build(
        self, target: MediaTarget, env: AcquisitionEnv, resources: GraphResources
    ) -> AcquisitionResult:
        try:
            stream = target.capture_stream()
        except CaptureUnsupportedError as exc:
            return self._fail(AcquisitionFailure.CAPTURE_UNSUPPORTED, str(exc))
        resources.stream = stream
        context = await self._open_context(env, resources)
        if isinstance(context, AcquisitionErr):
            return context
        source = context.create_media_stream_source(stream)
        resources.nodes.append(source)
        analyser = self._attach_analyser(context, source, env, resources, audible=False)
        return self._commit(target, analyser, resources)


class ShadowElementStrategy(AcquisitionStrategy):
    """Tap a hidden, muted twin of the target fed from the same source."""

    name = "shadow_element"

    async def _build(
        self, target: MediaTarget, env: AcquisitionEnv, resources: GraphResources
    ) -> AcquisitionResult:
        locator = target.source
        if not locator:
            return self._fail(AcquisitionFailure.SOURCE_LOCATOR_MISSING, "target has no source")
        shadow = env.backend.create_shadow_element(locator)
        resources.shadow = shadow
        shadow.muted = True
        ready = await wait_until_ready(
            shadow, env.sleep, timeout_s=env.ready_timeout_s, poll_s=env.ready_poll_s
        )
        if not ready:
            return self._fail(AcquisitionFailure.TARGET_NOT_READY, "shadow element never loaded")
        context = await self._open_context(env, resources)
        if isinstance(context, AcquisitionErr):
            return context
        source = context.create_media_element_source(shadow)
        resources.nodes.append(source)
        analyser = self._attach_analyser(context, source, env, resources, audible=False)
        sync = ShadowSync(target, shadow)
        resources.shadow_sync = sync
        sync.attach()
        return self._commit(target, analyser, resources)


def default_strategies() -> list[AcquisitionStrategy]:
    return [DirectTapStrategy(), StreamCaptureStrategy(), ShadowElementStrategy()]


class AcquisitionChain:
    """Runs the strategies in order and returns the first live session."""

    def __init__(
        self,
        env: AcquisitionEnv,
        strategies: Sequence[AcquisitionStrategy] | None = None,
    ) -> None:
        self.env = env
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.attempts: list[tuple[str, AcquisitionResult]] = []

    async def acquire(self, target: MediaTarget) -> AcquisitionResult:
        """Produce a live session for ``target`` or an error naming every failure."""
        self.attempts = []
        started = time.perf_counter()

        ready = await wait_until_ready(
            target,
            self.env.sleep,
            timeout_s=self.env.ready_timeout_s,
            poll_s=self.env.ready_poll_s,
        )
        if not ready:
            logger.info("acquisition.target_not_ready", target_id=target.target_id)
            return AcquisitionErr(AcquisitionFailure.TARGET_NOT_READY, "target never became ready")

        failures: list[str] = []
        for strategy in self.strategies:
            result = await strategy.attempt(target, self.env)
            self.attempts.append((strategy.name, result))
            if result.ok:
                logger.info(
                    "acquisition.succeeded",
                    strategy=strategy.name,
                    target_id=target.target_id,
                    attempts=len(self.attempts),
                    duration_ms=(time.perf_counter() - started) * 1000.0,
                )
                return result
            logger.info(
                "acquisition.strategy_failed",
                strategy=strategy.name,
                reason=result.reason.value,
                detail=result.detail,
                target_id=target.target_id,
            )
            failures.append(str(result))

        logger.warning(
            "acquisition.all_strategies_failed",
            target_id=target.target_id,
            failures=failures,
        )
        return AcquisitionErr(AcquisitionFailure.ALL_STRATEGIES_FAILED, "; ".join(failures))


__all__ = [
    "AcquisitionChain",
    "AcquisitionEnv",
    "AcquisitionStrategy",
    "DirectTapStrategy",
    "ShadowElementStrategy",
    "StreamCaptureStrategy",
    "default_strategies",
    "wait_until_ready",
]
