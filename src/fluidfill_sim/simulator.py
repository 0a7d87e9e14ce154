"""Main simulator orchestrating all components.

Owns the single ``MachineState`` of the filler and serialises everything
that touches it: production ticks, remote method calls and delayed status
transitions all run under one lock, so readers only ever see the result of
a completed tick or command.
"""

import logging
import random
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .alarms import AlarmEngine
from .commands import CommandProcessor, CommandResult
from .config import Config
from .mqtt_client import MQTTClient
from .production import BottleOutcome, TickDriver
from .state import MachineState, MachineStatus, MachineView
from .timers import ThreadingTimerService, TimerHandle, TimerService

logger = logging.getLogger(__name__)

Listener = Callable[[Dict[str, Any]], None]


class Simulator:
    """Filler simulator: tick driver, alarm engine and command processor on one state."""

    def __init__(
        self,
        config: Optional[Config] = None,
        timers: Optional[TimerService] = None,
        rng: Optional[random.Random] = None,
        mqtt_client: Optional[MQTTClient] = None,
        clock: Callable[[], datetime] = datetime.now,
        state: Optional[MachineState] = None,
    ):
        self.config = config or Config.default()
        self._timers = timers or ThreadingTimerService(self.config.simulation.time_acceleration)
        self._rng = rng or random.Random(self.config.simulation.random_seed)
        self._mqtt = mqtt_client
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []
        self._tick_handle: Optional[TimerHandle] = None
        self._running = False
        self.tick_count = 0

        self.state = state or MachineState.default()
        self.alarm_engine = AlarmEngine(self.config.alarms)
        self.tick_driver = TickDriver(self.config.production, self.alarm_engine, self._rng)
        self.commands = CommandProcessor(
            self.state,
            schedule=self._schedule,
            config=self.config.simulation,
            rng=self._rng,
            clock=clock,
        )

        if self._mqtt:
            self._mqtt.on_method_call = self.invoke
            self.add_listener(self._mqtt.publish_snapshot)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timers(self) -> TimerService:
        return self._timers

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, dry_run: bool = False) -> bool:
        """Start ticking, and connect the MQTT bridge if one is attached."""
        if self._running:
            return True

        if self._mqtt and not self._mqtt.connect(dry_run=dry_run):
            logger.error("Failed to connect to MQTT broker")
            return False

        sim_cfg = self.config.simulation
        self._tick_handle = self._timers.call_every(sim_cfg.tick_interval_s, self.tick)
        self._running = True

        # Power-on: the machine comes up by itself after a short delay
        if sim_cfg.auto_start_delay_s is not None and self.state.machine_status is MachineStatus.STARTING:
            with self._lock:
                self.commands.schedule_transition(sim_cfg.auto_start_delay_s, MachineStatus.RUNNING)

        self._notify(self.snapshot())
        logger.info(
            f"Simulator started: {self.state.identity.name}, tick every {sim_cfg.tick_interval_s}s"
        )
        return True

    def stop(self) -> None:
        """Stop ticking and cancel pending timers."""
        self._running = False
        if self._tick_handle:
            self._tick_handle.cancel()
            self._tick_handle = None
        self._timers.shutdown()
        if self._mqtt:
            self._mqtt.disconnect()
        logger.info("Simulator stopped")

    # =========================================================================
    # Ticks and commands
    # =========================================================================

    def tick(self) -> Optional[BottleOutcome]:
        """Execute one simulation tick."""
        with self._lock:
            self.tick_count += 1
            outcome = self.tick_driver.step(self.state)
            snapshot = self.snapshot()
        self._notify(snapshot)
        return outcome

    def invoke(self, name: str, *args: Any) -> CommandResult:
        """Invoke a remote method by name."""
        with self._lock:
            result = self.commands.invoke(name, *args)
            snapshot = self.snapshot()
        self._notify(snapshot)
        return result

    def _schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle: Optional[TimerHandle] = None

        def serialized():
            with self._lock:
                # Liveness is decided under the lock: a command may have
                # cancelled the handle while this thread waited for it
                if handle is not None and not handle.active:
                    logger.debug("Delayed transition cancelled before it ran")
                    return
                callback()
                snapshot = self.snapshot()
            self._notify(snapshot)

        handle = self._timers.call_later(delay, serialized)
        return handle

    # =========================================================================
    # Read access
    # =========================================================================

    def view(self) -> MachineView:
        return MachineView(self.state)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return self.view().snapshot()

    @property
    def active_alarms(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self.view().active_alarms

    def add_listener(self, listener: Listener) -> None:
        """Register a callback receiving the snapshot after every tick or command."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def _notify(self, snapshot: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Error in snapshot listener: {e}")
