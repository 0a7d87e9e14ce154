"""Deviation and alarm detection.

Two families of checks run once per production tick:

- **Instantaneous** rules compare the current actual against its target
  (fill volume, product temperature, CO2 pressure, cap torque), plus the
  informational tank-level and quality-streak rules.
- **Windowed** rules keep the last three samples of every monitored
  parameter. A single sample more than 8% off target raises a *Critical*
  deviation at once; a *Persistent* deviation needs all three samples more
  than 3% off target, so small drift is confirmed before the machine trips.

Any alarm forces the machine into ``Error``. The engine never clears
``Error``; only a command does.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from .config import AlarmConfig
from .state import MachineState, MachineStatus

logger = logging.getLogger(__name__)


class AlarmKind(Enum):
    INSTANT = "Instant Deviation"
    PERSISTENT = "Persistent Deviation"
    CRITICAL = "Critical Deviation"
    INFORMATIONAL = "Informational"


@dataclass
class AlarmRecord:
    """One active alarm."""

    parameter: str
    kind: AlarmKind
    magnitude: Optional[float] = None
    unit: str = ""
    actual: Optional[float] = None
    target: Optional[float] = None
    history: Optional[List[float]] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "parameter": self.parameter,
            "type": self.kind.value,
        }
        if self.magnitude is not None:
            payload["deviation"] = round(self.magnitude, 2)
            payload["unit"] = self.unit
        if self.message:
            payload["message"] = self.message
        payload["actual"] = self.actual
        if self.target is not None:
            payload["target"] = self.target
        if self.history is not None:
            payload["last_three_cycles"] = list(self.history)
        return payload


class ParameterHistory:
    """Fixed-capacity sliding window of recent samples."""

    def __init__(self, capacity: int = 3):
        self.capacity = capacity
        self._values: Deque[float] = deque(maxlen=capacity)

    def push(self, value: float) -> None:
        self._values.append(value)

    @property
    def full(self) -> bool:
        return len(self._values) == self.capacity

    def values(self) -> List[float]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)


def percent_deviation(actual: float, target: float) -> float:
    """Absolute deviation of ``actual`` from ``target`` in percent.

    A zero target has no meaningful percentage. It reports 0.0 when the
    actual is zero too and a full-scale 100.0 otherwise, which trips every
    percent rule instead of producing an infinite value.
    """
    if target == 0:
        return 0.0 if actual == 0 else 100.0
    return abs(actual - target) / abs(target) * 100


def check_parameter_deviation(
    parameter: str,
    actual: float,
    target: float,
    history: ParameterHistory,
    critical_pct: float = 8.0,
    persistent_pct: float = 3.0,
) -> Optional[AlarmRecord]:
    """Windowed check of one parameter. ``history`` must already hold ``actual``."""
    deviation = percent_deviation(actual, target)
    samples = history.values()

    if deviation > critical_pct:
        return AlarmRecord(
            parameter=parameter,
            kind=AlarmKind.CRITICAL,
            magnitude=deviation,
            unit="%",
            actual=actual,
            target=target,
            history=samples,
        )

    # Each sample is rounded to a whole percent before the comparison
    if history.full and all(
        round(percent_deviation(sample, target)) > persistent_pct for sample in samples
    ):
        return AlarmRecord(
            parameter=parameter,
            kind=AlarmKind.PERSISTENT,
            magnitude=deviation,
            unit="%",
            actual=actual,
            target=target,
            history=samples,
        )

    return None


# Windowed parameters: display name -> attribute on targets/actuals
WINDOWED_PARAMETERS = {
    "Fill Volume": "fill_volume",
    "Line Speed": "line_speed",
    "Product Temperature": "product_temp",
    "CO2 Pressure": "co2_pressure",
    "Cap Torque": "cap_torque",
    "Cycle Time": "cycle_time",
}


class AlarmEngine:
    """Rebuilds the active-alarm set of a machine once per tick."""

    def __init__(self, config: Optional[AlarmConfig] = None):
        self.config = config or AlarmConfig()
        self.histories: Dict[str, ParameterHistory] = {
            name: ParameterHistory(self.config.history_size) for name in WINDOWED_PARAMETERS
        }

    def evaluate(self, state: MachineState) -> List[AlarmRecord]:
        """Evaluate all rules against ``state`` and replace its active alarms."""
        alarms = self._instant_alarms(state)
        state.active_alarms = alarms

        if alarms:
            self._trip(state)

        for name, attr in WINDOWED_PARAMETERS.items():
            actual = getattr(state.actuals, attr)
            target = getattr(state.targets, attr)
            history = self.histories[name]
            history.push(actual)
            alarm = check_parameter_deviation(
                name,
                actual,
                target,
                history,
                critical_pct=self.config.critical_pct,
                persistent_pct=self.config.persistent_pct,
            )
            if alarm:
                alarms.append(alarm)
                self._trip(state)

        for alarm in alarms:
            logger.warning(f"Alarm [{alarm.kind.value}] {alarm.parameter}: {alarm.to_dict()}")

        return alarms

    def _instant_alarms(self, state: MachineState) -> List[AlarmRecord]:
        cfg = self.config
        targets = state.targets
        actuals = state.actuals
        alarms: List[AlarmRecord] = []

        fill_pct = percent_deviation(actuals.fill_volume, targets.fill_volume)
        if fill_pct > cfg.fill_volume_pct:
            alarms.append(
                AlarmRecord(
                    parameter="Fill Volume",
                    kind=AlarmKind.INSTANT,
                    magnitude=fill_pct,
                    unit="%",
                    actual=actuals.fill_volume,
                    target=targets.fill_volume,
                )
            )

        temp_dev = abs(actuals.product_temp - targets.product_temp)
        if temp_dev > cfg.temperature_abs:
            alarms.append(
                AlarmRecord(
                    parameter="Product Temperature",
                    kind=AlarmKind.INSTANT,
                    magnitude=temp_dev,
                    unit="°C",
                    actual=actuals.product_temp,
                    target=targets.product_temp,
                )
            )

        co2_dev = abs(actuals.co2_pressure - targets.co2_pressure)
        if co2_dev > cfg.co2_pressure_abs:
            alarms.append(
                AlarmRecord(
                    parameter="CO2 Pressure",
                    kind=AlarmKind.INSTANT,
                    magnitude=co2_dev,
                    unit="bar",
                    actual=actuals.co2_pressure,
                    target=targets.co2_pressure,
                )
            )

        if actuals.product_level_tank < cfg.tank_low_pct:
            alarms.append(
                AlarmRecord(
                    parameter="Product Level Tank",
                    kind=AlarmKind.INFORMATIONAL,
                    actual=round(actuals.product_level_tank, 1),
                    message="Low product level",
                )
            )

        torque_pct = percent_deviation(actuals.cap_torque, targets.cap_torque)
        if torque_pct > cfg.cap_torque_pct:
            alarms.append(
                AlarmRecord(
                    parameter="Cap Torque",
                    kind=AlarmKind.INSTANT,
                    magnitude=torque_pct,
                    unit="%",
                    actual=actuals.cap_torque,
                    target=targets.cap_torque,
                )
            )

        # Exactly N in a row: the alarm shows only on the tick the streak hits N
        if state.order_counters.total > 0 and state.bad_streak == cfg.quality_streak:
            alarms.append(
                AlarmRecord(
                    parameter="Quality Control",
                    kind=AlarmKind.INFORMATIONAL,
                    message=f"{cfg.quality_streak} bottles in a row have a defect",
                )
            )

        return alarms

    @staticmethod
    def _trip(state: MachineState) -> None:
        if state.machine_status is not MachineStatus.ERROR:
            logger.error(f"Alarm raised, machine status {state.machine_status.value} -> Error")
        state.machine_status = MachineStatus.ERROR
