"""Production tick: one bottle per tick while the machine is running."""

import logging
import random
from dataclasses import dataclass
from typing import Optional

from .alarms import AlarmEngine
from .config import ProductionConfig
from .state import MachineState, MachineStatus, RejectReason

logger = logging.getLogger(__name__)


@dataclass
class BottleOutcome:
    """Result of one simulated unit. ``reason`` is None for a good bottle."""

    reason: Optional[RejectReason] = None

    @property
    def good(self) -> bool:
        return self.reason is None


class TickDriver:
    """Advances production, perturbs actuals and runs the alarm engine.

    ``rng`` only needs a ``random()`` method returning floats in [0, 1), so
    tests can script exact draws.
    """

    def __init__(
        self,
        config: Optional[ProductionConfig] = None,
        alarm_engine: Optional[AlarmEngine] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or ProductionConfig()
        self.alarm_engine = alarm_engine or AlarmEngine()
        self.rng = rng or random.Random()

    def step(self, state: MachineState) -> Optional[BottleOutcome]:
        """Run one tick. Returns None when the machine is not running."""
        if state.machine_status is not MachineStatus.RUNNING:
            return None

        outcome = self._draw_outcome()
        self._count(state, outcome)
        self._perturb_actuals(state)
        self._update_tank(state)
        self._advance_station(state)
        self._update_quality_checks(state, outcome)

        self.alarm_engine.evaluate(state)
        return outcome

    def _draw_outcome(self) -> BottleOutcome:
        if self.rng.random() > self.config.bad_probability:
            return BottleOutcome()

        draw = self.rng.random()
        if draw < self.config.volume_threshold:
            reason = RejectReason.VOLUME
        elif draw < self.config.weight_threshold:
            reason = RejectReason.WEIGHT
        elif draw < self.config.cap_threshold:
            reason = RejectReason.CAP
        else:
            reason = RejectReason.OTHER
        return BottleOutcome(reason=reason)

    @staticmethod
    def _count(state: MachineState, outcome: BottleOutcome) -> None:
        if outcome.good:
            state.counters.good += 1
            state.order_counters.good += 1
            state.bad_streak = 0
        else:
            state.bad_streak += 1
            state.counters.add_reject(outcome.reason)
            state.order_counters.bad += 1
            logger.debug(
                f"Bottle rejected ({outcome.reason.value}), streak {state.bad_streak}"
            )

        state.counters.total += 1
        state.order_counters.total += 1
        state.counters.recompute_total_bad()
        state.recompute_progress()

    def _noise(self, half_width: float) -> float:
        return (self.rng.random() - 0.5) * 2 * half_width

    def _perturb_actuals(self, state: MachineState) -> None:
        cfg = self.config
        targets = state.targets
        actuals = state.actuals

        actuals.fill_volume = targets.fill_volume + self._noise(cfg.fill_volume_noise)
        actuals.line_speed = round(targets.line_speed + self._noise(cfg.line_speed_noise))
        actuals.product_temp = targets.product_temp + self._noise(cfg.temperature_noise)
        actuals.co2_pressure = targets.co2_pressure + self._noise(cfg.co2_pressure_noise)
        actuals.cap_torque = targets.cap_torque + self._noise(cfg.cap_torque_noise)
        actuals.cycle_time = targets.cycle_time + self._noise(cfg.cycle_time_noise)
        actuals.fill_accuracy_deviation = actuals.fill_volume - targets.fill_volume

    def _update_tank(self, state: MachineState) -> None:
        state.actuals.product_level_tank -= self.config.tank_depletion_pct
        if state.actuals.product_level_tank < self.config.tank_refill_below_pct:
            logger.info(f"Product tank refilled to {self.config.tank_refill_to_pct}%")
            state.actuals.product_level_tank = self.config.tank_refill_to_pct

    def _advance_station(self, state: MachineState) -> None:
        state.status.current_station = state.status.current_station % self.config.station_count + 1

    @staticmethod
    def _update_quality_checks(state: MachineState, outcome: BottleOutcome) -> None:
        state.status.weight_check = "Fail" if outcome.reason is RejectReason.WEIGHT else "Pass"
        state.status.level_check = "Fail" if outcome.reason is RejectReason.VOLUME else "Pass"
