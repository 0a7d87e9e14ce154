"""Machine state model for the FluidFill Express filler.

The state is one explicitly owned object. The tick driver, the alarm engine
and the command processor all receive it by reference; hosts read it through
``MachineView``.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class MachineStatus(Enum):
    """Machine mode. Only RUNNING advances production."""

    STOPPED = "Stopped"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    MAINTENANCE = "Maintenance"
    CLEANING = "Cleaning"
    ERROR = "Error"


class RejectReason(Enum):
    """Reason a bottle was rejected at the inspection station."""

    VOLUME = "Volume"
    WEIGHT = "Weight"
    CAP = "Cap"
    OTHER = "Other"


@dataclass
class MachineIdentity:
    name: str = "FluidFill Express #2"
    serial_number: str = "FFE2000-2023-002"
    plant: str = "Dortmund Beverage Center"
    production_segment: str = "Non-Alcoholic Beverages"
    production_line: str = "Juice Filling Line 3"


@dataclass
class ProductionOrder:
    order_number: str = "PO-2024-JUICE-5567"
    article: str = "ART-JUICE-APPLE-1L"
    quantity: int = 25000
    progress: float = 52.0


@dataclass
class ProcessTargets:
    fill_volume: float = 1000.0  # ml
    line_speed: int = 450  # bottles/min
    product_temp: float = 6.5  # °C
    co2_pressure: float = 3.8  # bar
    cap_torque: float = 22.0  # Nm
    cycle_time: float = 2.67  # s


@dataclass
class ProcessActuals:
    fill_volume: float = 999.2
    line_speed: int = 448
    product_temp: float = 6.3
    co2_pressure: float = 3.75
    cap_torque: float = 21.8
    cycle_time: float = 2.68
    fill_accuracy_deviation: float = -0.8
    product_level_tank: float = 67.3  # %


@dataclass
class MachineStatusBlock:
    machine_status: MachineStatus = MachineStatus.STARTING
    cleaning_status: str = "Normal Production"
    current_station: int = 12
    weight_check: str = "Pass"
    level_check: str = "Pass"

    @property
    def station_label(self) -> str:
        return f"Station {self.current_station}"


@dataclass
class TotalCounters:
    """Lifetime counters, cleared only by ResetCounters."""

    good: int = 1247589
    bad_volume: int = 2847
    bad_weight: int = 1923
    bad_cap: int = 1156
    bad_other: int = 734
    total_bad: int = 6600
    total: int = 1254249

    def add_reject(self, reason: RejectReason) -> None:
        if reason is RejectReason.VOLUME:
            self.bad_volume += 1
        elif reason is RejectReason.WEIGHT:
            self.bad_weight += 1
        elif reason is RejectReason.CAP:
            self.bad_cap += 1
        else:
            self.bad_other += 1

    def recompute_total_bad(self) -> None:
        self.total_bad = self.bad_volume + self.bad_weight + self.bad_cap + self.bad_other

    def reset(self) -> None:
        self.good = 0
        self.bad_volume = 0
        self.bad_weight = 0
        self.bad_cap = 0
        self.bad_other = 0
        self.total_bad = 0
        self.total = 0


@dataclass
class OrderCounters:
    """Counters scoped to the loaded production order."""

    good: int = 12847
    bad: int = 153
    total: int = 13000

    def reset(self) -> None:
        self.good = 0
        self.bad = 0
        self.total = 0


@dataclass
class Traceability:
    lot_number: str = "LOT-2024-APPLE-0456"
    expiration_date: str = "2026-09-23"


@dataclass
class MachineState:
    """Complete mutable state of one filler."""

    identity: MachineIdentity = field(default_factory=MachineIdentity)
    order: ProductionOrder = field(default_factory=ProductionOrder)
    targets: ProcessTargets = field(default_factory=ProcessTargets)
    actuals: ProcessActuals = field(default_factory=ProcessActuals)
    status: MachineStatusBlock = field(default_factory=MachineStatusBlock)
    counters: TotalCounters = field(default_factory=TotalCounters)
    order_counters: OrderCounters = field(default_factory=OrderCounters)
    traceability: Traceability = field(default_factory=Traceability)
    bad_streak: int = 0
    # Replaced wholesale by the alarm engine on every tick
    active_alarms: List[Any] = field(default_factory=list)

    @classmethod
    def default(cls) -> "MachineState":
        """Create the power-on state of the machine."""
        return cls()

    @property
    def machine_status(self) -> MachineStatus:
        return self.status.machine_status

    @machine_status.setter
    def machine_status(self, value: MachineStatus) -> None:
        self.status.machine_status = value

    def recompute_progress(self) -> None:
        """Order progress in percent, unclamped."""
        if self.order.quantity:
            self.order.progress = self.order_counters.total / self.order.quantity * 100
        else:
            self.order.progress = 0.0


class MachineView:
    """Read-only typed accessors over a ``MachineState``."""

    def __init__(self, state: MachineState):
        self._state = state

    # Identity
    @property
    def machine_name(self) -> str:
        return self._state.identity.name

    @property
    def serial_number(self) -> str:
        return self._state.identity.serial_number

    @property
    def plant(self) -> str:
        return self._state.identity.plant

    @property
    def production_segment(self) -> str:
        return self._state.identity.production_segment

    @property
    def production_line(self) -> str:
        return self._state.identity.production_line

    # Order
    @property
    def order_number(self) -> str:
        return self._state.order.order_number

    @property
    def article(self) -> str:
        return self._state.order.article

    @property
    def quantity(self) -> int:
        return self._state.order.quantity

    @property
    def progress(self) -> float:
        return self._state.order.progress

    # Process values
    @property
    def target_fill_volume(self) -> float:
        return self._state.targets.fill_volume

    @property
    def target_line_speed(self) -> int:
        return self._state.targets.line_speed

    @property
    def target_product_temp(self) -> float:
        return self._state.targets.product_temp

    @property
    def target_co2_pressure(self) -> float:
        return self._state.targets.co2_pressure

    @property
    def target_cap_torque(self) -> float:
        return self._state.targets.cap_torque

    @property
    def target_cycle_time(self) -> float:
        return self._state.targets.cycle_time

    @property
    def actual_fill_volume(self) -> float:
        return self._state.actuals.fill_volume

    @property
    def actual_line_speed(self) -> int:
        return self._state.actuals.line_speed

    @property
    def actual_product_temp(self) -> float:
        return self._state.actuals.product_temp

    @property
    def actual_co2_pressure(self) -> float:
        return self._state.actuals.co2_pressure

    @property
    def actual_cap_torque(self) -> float:
        return self._state.actuals.cap_torque

    @property
    def actual_cycle_time(self) -> float:
        return self._state.actuals.cycle_time

    @property
    def fill_accuracy_deviation(self) -> float:
        return self._state.actuals.fill_accuracy_deviation

    @property
    def tank_level(self) -> float:
        return self._state.actuals.product_level_tank

    # Status
    @property
    def machine_status(self) -> MachineStatus:
        return self._state.status.machine_status

    @property
    def cleaning_status(self) -> str:
        return self._state.status.cleaning_status

    @property
    def current_station(self) -> str:
        return self._state.status.station_label

    # Quality control
    @property
    def weight_check(self) -> str:
        return self._state.status.weight_check

    @property
    def level_check(self) -> str:
        return self._state.status.level_check

    # Counters
    @property
    def good_bottles(self) -> int:
        return self._state.counters.good

    @property
    def bad_volume_bottles(self) -> int:
        return self._state.counters.bad_volume

    @property
    def bad_weight_bottles(self) -> int:
        return self._state.counters.bad_weight

    @property
    def bad_cap_bottles(self) -> int:
        return self._state.counters.bad_cap

    @property
    def bad_other_bottles(self) -> int:
        return self._state.counters.bad_other

    @property
    def total_bad_bottles(self) -> int:
        return self._state.counters.total_bad

    @property
    def total_bottles(self) -> int:
        return self._state.counters.total

    @property
    def order_good_bottles(self) -> int:
        return self._state.order_counters.good

    @property
    def order_bad_bottles(self) -> int:
        return self._state.order_counters.bad

    @property
    def order_total_bottles(self) -> int:
        return self._state.order_counters.total

    @property
    def bad_streak(self) -> int:
        return self._state.bad_streak

    # Traceability
    @property
    def lot_number(self) -> str:
        return self._state.traceability.lot_number

    @property
    def expiration_date(self) -> str:
        return self._state.traceability.expiration_date

    @property
    def active_alarms(self) -> List[Dict[str, Any]]:
        return [alarm.to_dict() for alarm in self._state.active_alarms]

    def snapshot(self) -> Dict[str, Any]:
        """Flatten the state into node paths as exposed by the machine server."""
        s = self._state
        return {
            "MachineInformation/MachineName": s.identity.name,
            "MachineInformation/SerialNumber": s.identity.serial_number,
            "MachineInformation/Plant": s.identity.plant,
            "MachineInformation/ProductionSegment": s.identity.production_segment,
            "MachineInformation/ProductionLine": s.identity.production_line,
            "ProductionOrder/OrderNumber": s.order.order_number,
            "ProductionOrder/Article": s.order.article,
            "ProductionOrder/Quantity": s.order.quantity,
            "ProductionOrder/Progress": s.order.progress,
            "ProcessParameters/Targets/FillVolume": s.targets.fill_volume,
            "ProcessParameters/Targets/LineSpeed": s.targets.line_speed,
            "ProcessParameters/Targets/ProductTemperature": s.targets.product_temp,
            "ProcessParameters/Targets/CO2Pressure": s.targets.co2_pressure,
            "ProcessParameters/Targets/CapTorque": s.targets.cap_torque,
            "ProcessParameters/Targets/CycleTime": s.targets.cycle_time,
            "ProcessParameters/Actuals/FillVolume": s.actuals.fill_volume,
            "ProcessParameters/Actuals/LineSpeed": s.actuals.line_speed,
            "ProcessParameters/Actuals/ProductTemperature": s.actuals.product_temp,
            "ProcessParameters/Actuals/CO2Pressure": s.actuals.co2_pressure,
            "ProcessParameters/Actuals/CapTorque": s.actuals.cap_torque,
            "ProcessParameters/Actuals/CycleTime": s.actuals.cycle_time,
            "ProcessParameters/Actuals/FillAccuracyDeviation": s.actuals.fill_accuracy_deviation,
            "ProcessParameters/Actuals/ProductLevelTank": s.actuals.product_level_tank,
            "Status/MachineStatus": s.status.machine_status.value,
            "Status/CleaningCycleStatus": s.status.cleaning_status,
            "Status/CurrentStation": s.status.station_label,
            "QualityControl/WeightCheck": s.status.weight_check,
            "QualityControl/LevelCheck": s.status.level_check,
            "ProductionCounters/Total/GoodBottles": s.counters.good,
            "ProductionCounters/Total/BadBottlesVolume": s.counters.bad_volume,
            "ProductionCounters/Total/BadBottlesWeight": s.counters.bad_weight,
            "ProductionCounters/Total/BadBottlesCap": s.counters.bad_cap,
            "ProductionCounters/Total/BadBottlesOther": s.counters.bad_other,
            "ProductionCounters/Total/TotalBadBottles": s.counters.total_bad,
            "ProductionCounters/Total/TotalBottles": s.counters.total,
            "ProductionCounters/Order/GoodBottles": s.order_counters.good,
            "ProductionCounters/Order/BadBottles": s.order_counters.bad,
            "ProductionCounters/Order/TotalBottles": s.order_counters.total,
            "Traceability/LotNumber": s.traceability.lot_number,
            "Traceability/ExpirationDate": s.traceability.expiration_date,
            "Alarms/ActiveAlarms": json.dumps(self.active_alarms),
        }
