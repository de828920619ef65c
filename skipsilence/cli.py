"""Command-line entry point: replay an audio file through the controller.

Usage:
    python -m skipsilence simulate talk.wav --grace-ms 300 --fast-rate 2.5
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from skipsilence.common.config import ConfigError, LoggingConfig, RuntimeConfig
from skipsilence.common.logging import configure_logging, get_logger
from skipsilence.controller.config_bridge import InMemoryConfigBridge, JsonFileConfigBridge
from skipsilence.controller.loop import PlaybackRateController
from skipsilence.controller.protocols import FrameScheduler
from skipsilence.hosts.simulated import (
    SimulatedAudioBackend,
    SimulatedDiscovery,
    SimulatedFrameScheduler,
    SimulatedMediaElement,
    VirtualClock,
    load_audio,
)

logger = get_logger(__name__)


@dataclass
class SimulationReport:
    """What happened while replaying one file."""

    media_seconds: float
    wall_seconds: float
    rate_changes: int
    strategy: str | None
    threshold: float
    calibrated: bool

    @property
    def saved_seconds(self) -> float:
        return max(self.media_seconds - self.wall_seconds, 0.0)

    def lines(self) -> list[str]:
        saved_pct = 100.0 * self.saved_seconds / self.media_seconds if self.media_seconds else 0.0
        return [
            f"media duration : {self.media_seconds:8.2f} s",
            f"playback time  : {self.wall_seconds:8.2f} s",
            f"time saved     : {self.saved_seconds:8.2f} s ({saved_pct:.1f}%)",
            f"rate changes   : {self.rate_changes:8d}",
            f"analysis       : {self.strategy or 'heuristic only'}",
            f"threshold      : {self.threshold:.4f}{' (calibrated)' if self.calibrated else ''}",
        ]


class _StopAfter:
    """Stops the controller once virtual time passes a limit."""

    def __init__(self, inner: FrameScheduler, clock: VirtualClock) -> None:
        self.inner = inner
        self.clock = clock
        self.limit_ms = float("inf")
        self.controller: PlaybackRateController | None = None

    async def wait_frame(self) -> None:
        await self.inner.wait_frame()
        if self.controller is not None and self.clock.now_ms() >= self.limit_ms:
            logger.warning("simulate.time_limit_reached", limit_ms=self.limit_ms)
            self.controller.stop()


def _config_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if args.threshold is not None:
        overrides["silence_threshold"] = args.threshold
        overrides["calibrated"] = True
    if args.grace_ms is not None:
        overrides["grace_ms"] = args.grace_ms
    if args.fast_rate is not None:
        overrides["fast_rate"] = args.fast_rate
    if args.natural_rate is not None:
        overrides["natural_rate"] = args.natural_rate
    if args.calibrate:
        overrides["calibrated"] = False
    elif "calibrated" not in overrides and args.config is None:
        overrides["calibrated"] = True
    return overrides


async def simulate(args: argparse.Namespace, runtime: RuntimeConfig) -> SimulationReport:
    signal, sample_rate = load_audio(args.input)
    locator = Path(args.input).resolve().as_uri()

    clock = VirtualClock()
    backend = SimulatedAudioBackend()
    backend.register_source(locator, signal, sample_rate)
    element = SimulatedMediaElement(
        signal,
        sample_rate,
        source=locator,
        capture_supported=not args.no_capture,
    )
    if args.claimed:
        backend.claim_externally(element)

    if args.config is not None:
        bridge: InMemoryConfigBridge = JsonFileConfigBridge(args.config)
        overrides = _config_overrides(args)
        if overrides:
            bridge.update(**overrides)
    else:
        bridge = InMemoryConfigBridge(_config_overrides(args))

    frames = SimulatedFrameScheduler(
        clock, lambda: [element, *backend.live_shadows], runtime.frame_interval_s
    )
    scheduler = _StopAfter(frames, clock)
    controller = PlaybackRateController(
        SimulatedDiscovery(element),
        backend,
        bridge,
        runtime=runtime,
        clock=clock,
        scheduler=scheduler,
        sleep=clock.sleep,
    )
    scheduler.controller = controller
    slowest = min(controller.config.natural_rate, controller.config.fast_rate, 1.0)
    scheduler.limit_ms = (element.duration / slowest + 60.0) * 1000.0
    element.add_event_listener("ended", controller.stop)

    await controller.run()

    config = controller.config
    return SimulationReport(
        media_seconds=element.duration,
        wall_seconds=clock.now_ms() / 1000.0,
        rate_changes=len(element.rate_writes),
        strategy=controller.status()["last_strategy"],
        threshold=config.silence_threshold,
        calibrated=config.calibrated,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="skipsilence",
        description="Speed playback up during silence and back down when sound resumes.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sim = subparsers.add_parser(
        "simulate", help="Replay an audio file through the controller in virtual time."
    )
    sim.add_argument("input", help="Audio file readable by libsndfile (wav, flac, ogg ...).")
    sim.add_argument("-t", "--threshold", type=float, default=None, help="Silence RMS threshold.")
    sim.add_argument("-g", "--grace-ms", type=int, default=None, help="Quiet time before speeding up.")
    sim.add_argument("-f", "--fast-rate", type=float, default=None, help="Rate during silence.")
    sim.add_argument("-n", "--natural-rate", type=float, default=None, help="Rate during sound.")
    sim.add_argument(
        "-c", "--calibrate", action="store_true", help="Derive the threshold from the first second."
    )
    sim.add_argument(
        "--config", type=Path, default=None, help="JSON settings file to load and persist to."
    )
    sim.add_argument(
        "--claimed",
        action="store_true",
        help="Pretend another consumer already tapped the element.",
    )
    sim.add_argument(
        "--no-capture", action="store_true", help="Pretend output stream capture is unsupported."
    )
    sim.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ERROR.")
    sim.add_argument("--json-logs", action="store_true", default=None, help="Emit JSON log lines.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        log_kwargs: dict[str, Any] = {}
        if args.log_level:
            log_kwargs["level"] = args.log_level.upper()
        if args.json_logs:
            log_kwargs["json_logs"] = True
        logging_config = LoggingConfig(**log_kwargs)
        runtime = RuntimeConfig()
    except ConfigError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(
        logging_config.level,
        json_logs=logging_config.json_logs,
        service_name=logging_config.service_name,
    )

    if args.command == "simulate":
        if not Path(args.input).is_file():
            print(f"file not found: {args.input}", file=sys.stderr)
            return 2
        try:
            report = asyncio.run(simulate(args, runtime))
        except ConfigError as exc:
            print(f"configuration error: {exc}", file=sys.stderr)
            return 2
        for line in report.lines():
            print(line)
        return 0
    return 1


__all__ = ["SimulationReport", "main", "parse_args", "simulate"]
