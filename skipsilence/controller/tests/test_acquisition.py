"""Component tests for the acquisition strategy chain on the simulated host."""

import asyncio

import numpy as np
import pytest

from skipsilence.controller.acquisition import (
    AcquisitionChain,
    AcquisitionEnv,
    AcquisitionStrategy,
    DirectTapStrategy,
    StreamCaptureStrategy,
    wait_until_ready,
)
from skipsilence.controller.sampler import VolumeSampler
from skipsilence.controller.types import (
    ANALYSER_FFT_SIZE,
    AcquisitionErr,
    AcquisitionFailure,
    AcquisitionOk,
    AudioGraphError,
)
from skipsilence.hosts.simulated import SimulatedAudioBackend

SOURCE = "sim://clip"


class _Sleeper:
    """Records sleeps and optionally runs a hook after each one."""

    def __init__(self, hook=None) -> None:
        self.calls: list[float] = []
        self.hook = hook

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.hook is not None:
            self.hook(len(self.calls))


@pytest.fixture
def backend(make_element) -> SimulatedAudioBackend:
    backend = SimulatedAudioBackend()
    element = make_element()
    backend.register_source(SOURCE, element.signal, element.sample_rate)
    return backend


def _chain(backend, sleep=None, **env_kwargs) -> AcquisitionChain:
    env = AcquisitionEnv(backend=backend, sleep=sleep or _Sleeper(), **env_kwargs)
    return AcquisitionChain(env)


class TestAcquisitionChain:
    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_direct_tap_preferred(self, backend, make_element):
        element = make_element()
        chain = _chain(backend)

        result = await chain.acquire(element)

        assert isinstance(result, AcquisitionOk)
        session = result.session
        assert session.strategy == "direct_tap"
        assert session.buffer_size == ANALYSER_FFT_SIZE
        assert [name for name, _ in chain.attempts] == ["direct_tap"]
        (context,) = backend.live_contexts
        (analyser,) = context.analysers
        assert analyser.outputs == [context.destination]
        assert analyser.fft_size == 512
        assert analyser.smoothing_time_constant == 0.8
        assert backend.is_source_claimed(element)

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_claimed_source_falls_back_to_stream_capture(self, backend, make_element):
        element = make_element()
        backend.claim_externally(element)
        chain = _chain(backend)

        result = await chain.acquire(element)

        assert result.ok
        assert result.session.strategy == "stream_capture"
        first_name, first_result = chain.attempts[0]
        assert first_name == "direct_tap"
        assert first_result.reason is AcquisitionFailure.SOURCE_ALREADY_CLAIMED
        (context,) = backend.live_contexts
        (analyser,) = context.analysers
        assert analyser.outputs == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_no_capture_falls_back_to_muted_shadow(self, backend, make_element):
        element = make_element(capture_supported=False)
        backend.claim_externally(element)
        chain = _chain(backend)

        result = await chain.acquire(element)

        assert result.ok
        session = result.session
        assert session.strategy == "shadow_element"
        assert session.has_shadow
        assert [name for name, _ in chain.attempts] == [
            "direct_tap",
            "stream_capture",
            "shadow_element",
        ]
        assert chain.attempts[1][1].reason is AcquisitionFailure.CAPTURE_UNSUPPORTED
        (shadow,) = backend.live_shadows
        assert shadow.muted is True
        assert shadow.paused is False
        (context,) = backend.live_contexts
        assert context.analysers[0].outputs == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_shadow_without_locator(self, backend, make_element):
        element = make_element(source=None, capture_supported=False)
        backend.claim_externally(element)
        chain = _chain(backend)

        result = await chain.acquire(element)

        assert isinstance(result, AcquisitionErr)
        assert result.reason is AcquisitionFailure.ALL_STRATEGIES_FAILED
        assert chain.attempts[2][1].reason is AcquisitionFailure.SOURCE_LOCATOR_MISSING
        assert backend.live_contexts == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_all_strategies_fail_without_leftovers(self, make_element):
        backend = SimulatedAudioBackend(context_available=False)
        backend.register_source(SOURCE, np.zeros(800, dtype=np.float32), 8000)
        element = make_element()
        chain = _chain(backend)

        result = await chain.acquire(element)

        assert isinstance(result, AcquisitionErr)
        assert result.reason is AcquisitionFailure.ALL_STRATEGIES_FAILED
        assert "direct_tap" in result.detail
        assert "stream_capture" in result.detail
        assert "shadow_element" in result.detail
        assert [r.reason for _, r in chain.attempts] == [AcquisitionFailure.CONTEXT_UNAVAILABLE] * 3
        assert backend.live_contexts == []
        assert backend.live_shadows == []
        assert all(shadow.disposed for shadow in backend.shadows)
        assert not backend.is_source_claimed(element)

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_context_that_stays_suspended_is_rolled_back(self, backend, make_element):
        backend.resume_blocked = True
        element = make_element()
        chain = _chain(backend)

        result = await chain.acquire(element)

        assert not result.ok
        assert chain.attempts[0][1].reason is AcquisitionFailure.CONTEXT_UNAVAILABLE
        assert backend.contexts
        assert all(context.state == "closed" for context in backend.contexts)
        assert backend.live_shadows == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_target_not_ready_times_out(self, backend, make_element):
        element = make_element(ready_state=0)
        sleeper = _Sleeper()
        chain = _chain(backend, sleeper, ready_timeout_s=0.3, ready_poll_s=0.1)

        result = await chain.acquire(element)

        assert isinstance(result, AcquisitionErr)
        assert result.reason is AcquisitionFailure.TARGET_NOT_READY
        assert sleeper.calls == [0.1, 0.1, 0.1]
        assert backend.contexts == []
        assert chain.attempts == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_target_becoming_ready_is_acquired(self, backend, make_element):
        element = make_element(ready_state=1)

        def load(calls: int) -> None:
            if calls == 2:
                element.ready_state = 4

        chain = _chain(backend, _Sleeper(load), ready_timeout_s=5.0, ready_poll_s=0.1)

        result = await chain.acquire(element)

        assert result.ok
        assert result.session.strategy == "direct_tap"

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_shadow_that_never_loads_is_disposed(self, make_element):
        backend = SimulatedAudioBackend(shadow_ready_state=0)
        element = make_element(capture_supported=False)
        backend.register_source(SOURCE, element.signal, element.sample_rate)
        backend.claim_externally(element)
        chain = _chain(backend, ready_timeout_s=0.2, ready_poll_s=0.1)

        result = await chain.acquire(element)

        assert not result.ok
        assert chain.attempts[2][1].reason is AcquisitionFailure.TARGET_NOT_READY
        assert backend.live_shadows == []
        assert backend.contexts == []


class _HalfBuiltStrategy(AcquisitionStrategy):
    name = "half_built"

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.nodes = []

    async def _build(self, target, env, resources):
        context = await self._open_context(env, resources)
        analyser = context.create_analyser()
        resources.nodes.append(analyser)
        self.nodes.append(analyser)
        raise self.error


class _HangingStrategy(AcquisitionStrategy):
    name = "hanging"

    def __init__(self) -> None:
        self.started = asyncio.Event()

    async def _build(self, target, env, resources):
        await self._open_context(env, resources)
        self.started.set()
        await asyncio.Event().wait()


class TestStrategyRollback:
    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_graph_error(self, backend, make_element):
        strategy = _HalfBuiltStrategy(RuntimeError("host bug"))
        env = AcquisitionEnv(backend=backend, sleep=_Sleeper())

        result = await strategy.attempt(make_element(), env)

        assert isinstance(result, AcquisitionErr)
        assert result.reason is AcquisitionFailure.GRAPH_ERROR
        assert result.strategy == "half_built"
        assert backend.live_contexts == []
        assert strategy.nodes[0].disconnected

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_audio_graph_error_is_rolled_back(self, backend, make_element):
        strategy = _HalfBuiltStrategy(AudioGraphError("connect failed"))
        env = AcquisitionEnv(backend=backend, sleep=_Sleeper())

        result = await strategy.attempt(make_element(), env)

        assert result.reason is AcquisitionFailure.GRAPH_ERROR
        assert "connect failed" in str(result)
        assert backend.live_contexts == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_cancellation_rolls_back_and_propagates(self, backend, make_element):
        strategy = _HangingStrategy()
        env = AcquisitionEnv(backend=backend, sleep=_Sleeper())

        task = asyncio.create_task(strategy.attempt(make_element(), env))
        await strategy.started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert backend.contexts
        assert backend.live_contexts == []

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_chain_order_is_configurable(self, backend, make_element):
        element = make_element()
        env = AcquisitionEnv(backend=backend, sleep=_Sleeper())
        chain = AcquisitionChain(env, [StreamCaptureStrategy(), DirectTapStrategy()])

        result = await chain.acquire(element)

        assert result.session.strategy == "stream_capture"
        assert not backend.is_source_claimed(element)


class TestAnalysisSession:
    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_reads_loudness_at_playhead(self, backend, make_element):
        element = make_element()
        result = await _chain(backend).acquire(element)
        session = result.session
        element.advance(0.5)

        loudness = session.read_loudness(VolumeSampler())

        assert loudness == pytest.approx(0.1, rel=1e-3)

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_release_is_complete_and_idempotent(self, backend, make_element):
        element = make_element()
        session = (await _chain(backend).acquire(element)).session
        (context,) = backend.live_contexts

        await session.release()
        await session.release()

        assert session.released
        assert context.state == "closed"
        assert all(analyser.disconnected for analyser in context.analysers)
        assert not backend.is_source_claimed(element)
        with pytest.raises(AudioGraphError):
            session.read_loudness(VolumeSampler())

    @pytest.mark.component
    @pytest.mark.asyncio
    async def test_shadow_follows_primary(self, backend, make_element):
        element = make_element(capture_supported=False)
        backend.claim_externally(element)
        session = (await _chain(backend).acquire(element)).session
        (shadow,) = backend.live_shadows

        element.seek(1.5)
        element.playback_rate = 2.0
        assert shadow.current_time == pytest.approx(1.5)
        assert shadow.playback_rate == 2.0

        element.pause()
        assert shadow.paused

        await session.release()
        assert shadow.disposed
        assert element.listener_count() == 0


class TestWaitUntilReady:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ready_target_does_not_sleep(self, make_element):
        sleeper = _Sleeper()

        assert await wait_until_ready(make_element(), sleeper, timeout_s=1.0, poll_s=0.1)
        assert sleeper.calls == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_zero_timeout_fails_immediately(self, make_element):
        sleeper = _Sleeper()

        assert not await wait_until_ready(
            make_element(ready_state=0), sleeper, timeout_s=0.0, poll_s=0.1
        )
        assert sleeper.calls == []
