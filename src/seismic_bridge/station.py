"""The station: one explicit context object wiring the event pipeline.

Data flow::

    raw line ─▶ classify ─┐
                          ├─▶ Event ─▶ hub.publish (journal + subscribers)
    simulator tick ───────┘      │
                                 └─ complete Sample ─▶ sample history
                                                   └─▶ AlarmEngine.update ─▶ AlarmTransition ─▶ hub

A single :class:`Station` is built at startup and handed to the sources,
the subscriber server and the recorder.  All mutating calls are made from
the event loop; history reads are safe from any thread.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from seismic_bridge.alarm import AlarmEngine, intensity_from_sample
from seismic_bridge.classifier import SampleLatch, classify
from seismic_bridge.config import AppConfig
from seismic_bridge.history import HistoryBuffer
from seismic_bridge.hub import EventHub
from seismic_bridge.models import (
    AlarmCause,
    AlarmStatus,
    AlarmTransition,
    ConnectionStatus,
    Event,
    Fault,
    RawLine,
    Sample,
)
from seismic_bridge.simulator import SignalModel, SimulatedTick

logger = logging.getLogger(__name__)

CommandSink = Callable[[dict[str, Any]], Awaitable[None]]


class InvalidCommand(Exception):
    """A control request that cannot be honoured in the current mode."""


class Station:
    """Owns the buffers, the alarm engine, the hub and the sample latch.

    Parameters
    ----------
    config:
        Application configuration.
    simulator:
        Signal model for ``simulate`` mode.  Built from ``config`` when
        omitted and the mode is ``simulate``.
    clock:
        Returns the current time; defaults to UTC wall-clock time.
    """

    def __init__(
        self,
        config: AppConfig,
        simulator: Optional[SignalModel] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.mode = config.source.mode
        self.log = HistoryBuffer(config.history.log_capacity, name="log")
        self.samples = HistoryBuffer(config.history.sample_capacity, name="samples")
        self.hub = EventHub(
            self.log,
            replay_size=config.hub.replay_size,
            queue_size=config.hub.queue_size,
        )
        self.alarm = AlarmEngine(config.alarm)
        if simulator is None and self.mode == "simulate":
            simulator = SignalModel(config.simulator)
        self.simulator = simulator
        self._latch = SampleLatch()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_timestamp: Optional[datetime] = None
        self._command_sink: Optional[CommandSink] = None

    # ── transport ───────────────────────────────────────────────────

    @property
    def hardware(self) -> bool:
        return self.mode != "simulate"

    def attach_transport(self, sink: CommandSink) -> None:
        self._command_sink = sink

    def detach_transport(self) -> None:
        self._command_sink = None

    # ── ingestion ───────────────────────────────────────────────────

    def ingest_line(self, text: str, now: Optional[datetime] = None) -> list[Event]:
        """Retain, classify and dispatch one source line."""
        now = self._stamp(now)
        events: list[Event] = [RawLine(timestamp=now, text=text)]
        events.extend(classify(text, now, self._latch))
        dispatched: list[Event] = []
        for event in events:
            dispatched.extend(self._dispatch(event))
        return dispatched

    def ingest_tick(self, now: Optional[datetime] = None) -> SimulatedTick:
        """Generate and dispatch one synthetic reading."""
        if self.simulator is None:
            raise InvalidCommand("No signal model attached")
        now = self._stamp(now)
        tick = self.simulator.tick(now)
        self.hub.publish(tick.sample)
        self.samples.append(tick.sample)
        self._publish(self.alarm.update(tick.intensity, now))
        return tick

    def ingest_event(self, event: Event) -> Event:
        """Publish an event produced by a collaborator (fault, link status)."""
        event = dataclasses.replace(event, timestamp=self._stamp(event.timestamp))
        if isinstance(event, Fault):
            logger.warning("Source fault: %s", event.message)
        self.hub.publish(event)
        return event

    def report_fault(self, message: str) -> Event:
        return self.ingest_event(Fault(message=message))

    def report_connection(self, service: str, connected: bool) -> Event:
        return self.ingest_event(ConnectionStatus(service=service, connected=connected))

    # ── control requests ────────────────────────────────────────────

    async def request_alarm(self, status: AlarmStatus) -> Optional[AlarmTransition]:
        """Manually switch the alarm and, on hardware, command the board.

        Raises
        ------
        InvalidCommand
            In hardware mode when no transport is attached.
        """
        if self.hardware and self._command_sink is None:
            raise InvalidCommand("Serial transport not connected")

        transition = self.alarm.manual_set(status, self._stamp(None))
        self._publish(transition)

        if self.hardware:
            command = {
                "message": f"Manual alarm {status.value.upper()}",
                "earthquake": status.value,
            }
            try:
                await self._command_sink(command)
            except OSError as exc:
                self.report_fault(f"Command delivery failed: {exc}")
        return transition

    def simulate_event(self) -> Optional[AlarmTransition]:
        """Inject a strong synthetic earthquake (simulation mode only)."""
        if self.simulator is None:
            raise InvalidCommand("Start the simulation to trigger an earthquake")
        intensity = self.simulator.trigger()
        transition = self.alarm.update(intensity, self._stamp(None))
        self._publish(transition)
        return transition

    def reset_peak(self) -> None:
        self.alarm.reset_peak()

    def snapshot(self) -> dict[str, Any]:
        """Current alarm figures for dashboards and exporters."""
        alarm = self.alarm
        snap = {
            "station_id": self.config.station_id,
            "source": self.mode,
            "status": alarm.status.value,
            "mode": alarm.mode.value,
            "latched": alarm.latched,
            "intensity": alarm.intensity,
            "peak": alarm.peak,
            "active": alarm.active,
            "subscribers": len(self.hub),
            "samples": len(self.samples),
        }
        if self.simulator is not None:
            snap["decay_rate"] = self.simulator.decay_rate
            snap["phase"] = self.simulator.phase
        return snap

    # ── internal ────────────────────────────────────────────────────

    def _dispatch(self, event: Event) -> list[Event]:
        self.hub.publish(event)
        out: list[Event] = [event]

        if isinstance(event, Sample):
            if not event.complete:
                logger.debug("Incomplete sample withheld from history: %s", event)
                return out
            self.samples.append(event)
            if self.config.alarm.derive_from_samples:
                transition = self.alarm.update(
                    intensity_from_sample(event), event.timestamp
                )
                if transition is not None:
                    self.hub.publish(transition)
                    out.append(transition)

        elif isinstance(event, AlarmTransition) and event.cause is not AlarmCause.THRESHOLD:
            if self.config.alarm.external_overrides:
                self.alarm.apply_external(event)

        return out

    def _publish(self, event: Optional[Event]) -> None:
        if event is not None:
            self.hub.publish(event)

    def _stamp(self, now: Optional[datetime]) -> datetime:
        """Clamp timestamps so they never step backwards."""
        now = now or self._clock()
        if self._last_timestamp is not None and now < self._last_timestamp:
            now = self._last_timestamp
        self._last_timestamp = now
        return now
