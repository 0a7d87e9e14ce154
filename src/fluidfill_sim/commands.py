"""Remote methods of the filler.

Every operation validates its precondition and arguments first and only
then mutates the state, so a rejected or failed call leaves the machine
untouched. Start, stop and product changeover finish with a delayed status
transition scheduled on the host's timer service.
"""

import logging
import random
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .config import SimulationConfig
from .state import MachineState, MachineStatus
from .timers import TimerHandle

logger = logging.getLogger(__name__)

Scheduler = Callable[[float, Callable[[], None]], TimerHandle]


class CommandError(Exception):
    """Base class for command errors."""


class PreconditionRejected(CommandError):
    """Command not allowed in the current machine status."""


class CommandOutcome(Enum):
    SUCCESS = "success"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class CommandResult:
    """Outcome of one method call."""

    outcome: CommandOutcome
    output: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is CommandOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "output": self.output,
            "error": self.error,
        }


STOPPABLE = (
    MachineStatus.RUNNING,
    MachineStatus.ERROR,
    MachineStatus.MAINTENANCE,
    MachineStatus.CLEANING,
)


def add_years(day: date, years: int) -> date:
    """Shift by whole years; Feb 29 rolls over to Mar 1 in non-leap years."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return date(day.year + years, 3, 1)


class CommandProcessor:
    """The eleven remote methods of the machine."""

    def __init__(
        self,
        state: MachineState,
        schedule: Scheduler,
        config: Optional[SimulationConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.state = state
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random()
        self.clock = clock
        self._schedule = schedule
        self._pending: Optional[TimerHandle] = None

        self._methods: Dict[str, Callable[..., str]] = {
            "StartMachine": self._start_machine,
            "StopMachine": self._stop_machine,
            "LoadProductionOrder": self._load_production_order,
            "EnterMaintenanceMode": self._enter_maintenance_mode,
            "StartCIPCycle": self._start_cip_cycle,
            "StartSIPCycle": self._start_sip_cycle,
            "ResetCounters": self._reset_counters,
            "ChangeProduct": self._change_product,
            "AdjustFillVolume": self._adjust_fill_volume,
            "GenerateLotNumber": self._generate_lot_number,
            "EmergencyStop": self._emergency_stop,
        }

    @property
    def method_names(self):
        return list(self._methods)

    @property
    def pending_transition(self) -> Optional[TimerHandle]:
        if self._pending and self._pending.active:
            return self._pending
        return None

    def invoke(self, name: str, *args: Any) -> CommandResult:
        """Call a method by name."""
        handler = self._methods.get(name)
        if handler is None:
            logger.warning(f"Unknown method: {name}")
            return CommandResult(CommandOutcome.FAILED, error=f"Unknown method: {name}")

        try:
            output = handler(*args)
        except PreconditionRejected as e:
            logger.info(f"{name} rejected: {e}")
            return CommandResult(CommandOutcome.REJECTED)
        except Exception as e:
            logger.exception(f"{name} failed")
            return CommandResult(CommandOutcome.FAILED, error=str(e))

        logger.info(f"{name}: {output}")
        return CommandResult(CommandOutcome.SUCCESS, output=output)

    # Typed entry points

    def start_machine(self) -> CommandResult:
        return self.invoke("StartMachine")

    def stop_machine(self) -> CommandResult:
        return self.invoke("StopMachine")

    def load_production_order(
        self,
        order_number: str,
        article: str,
        quantity: int,
        target_fill_volume: float,
        target_line_speed: int,
        target_product_temp: float,
        target_co2_pressure: float,
        target_cap_torque: float,
        target_cycle_time: float,
    ) -> CommandResult:
        return self.invoke(
            "LoadProductionOrder",
            order_number,
            article,
            quantity,
            target_fill_volume,
            target_line_speed,
            target_product_temp,
            target_co2_pressure,
            target_cap_torque,
            target_cycle_time,
        )

    def enter_maintenance_mode(self) -> CommandResult:
        return self.invoke("EnterMaintenanceMode")

    def start_cip_cycle(self) -> CommandResult:
        return self.invoke("StartCIPCycle")

    def start_sip_cycle(self) -> CommandResult:
        return self.invoke("StartSIPCycle")

    def reset_counters(self) -> CommandResult:
        return self.invoke("ResetCounters")

    def change_product(self, new_article: str) -> CommandResult:
        return self.invoke("ChangeProduct", new_article)

    def adjust_fill_volume(self, new_volume: float) -> CommandResult:
        return self.invoke("AdjustFillVolume", new_volume)

    def generate_lot_number(self) -> CommandResult:
        return self.invoke("GenerateLotNumber")

    def emergency_stop(self) -> CommandResult:
        return self.invoke("EmergencyStop")

    # Status transitions

    def _set_status(self, status: MachineStatus) -> None:
        if self.config.cancel_on_supersede and self.pending_transition:
            logger.info("Pending delayed transition superseded")
            self._pending.cancel()
            self._pending = None
        self.state.machine_status = status

    def schedule_transition(self, delay: float, status: MachineStatus) -> TimerHandle:
        """Switch to ``status`` after ``delay``. The newest pending transition can be superseded."""

        def transition():
            logger.info(
                f"Delayed transition: {self.state.machine_status.value} -> {status.value}"
            )
            self.state.machine_status = status

        self._pending = self._schedule(delay, transition)
        return self._pending

    # Handlers: validate, then mutate

    def _start_machine(self) -> str:
        if self.state.machine_status is not MachineStatus.STOPPED:
            raise PreconditionRejected(
                f"cannot start from {self.state.machine_status.value}"
            )
        self._set_status(MachineStatus.STARTING)
        self.schedule_transition(self.config.start_delay_s, MachineStatus.RUNNING)
        return "Machine starting"

    def _stop_machine(self) -> str:
        if self.state.machine_status not in STOPPABLE:
            raise PreconditionRejected(
                f"cannot stop from {self.state.machine_status.value}"
            )
        self._set_status(MachineStatus.STOPPING)
        self.schedule_transition(self.config.stop_delay_s, MachineStatus.STOPPED)
        return "Machine stopping"

    def _load_production_order(
        self,
        order_number,
        article,
        quantity,
        target_fill_volume,
        target_line_speed,
        target_product_temp,
        target_co2_pressure,
        target_cap_torque,
        target_cycle_time,
    ) -> str:
        quantity = int(quantity)
        if quantity < 0:
            raise ValueError(f"quantity must not be negative, got {quantity}")
        line_speed = int(target_line_speed)
        if line_speed < 0:
            raise ValueError(f"line speed must not be negative, got {line_speed}")
        values = (
            float(target_fill_volume),
            float(target_product_temp),
            float(target_co2_pressure),
            float(target_cap_torque),
            float(target_cycle_time),
        )

        order = self.state.order
        targets = self.state.targets
        order.order_number = str(order_number)
        order.article = str(article)
        order.quantity = quantity
        targets.line_speed = line_speed
        (
            targets.fill_volume,
            targets.product_temp,
            targets.co2_pressure,
            targets.cap_torque,
            targets.cycle_time,
        ) = values

        self.state.order_counters.reset()
        order.progress = 0.0
        return f"Production order {order.order_number} loaded successfully"

    def _enter_maintenance_mode(self) -> str:
        self._set_status(MachineStatus.MAINTENANCE)
        return "Entered maintenance mode"

    def _start_cip_cycle(self) -> str:
        self.state.status.cleaning_status = "CIP Active"
        self._set_status(MachineStatus.CLEANING)
        return "CIP cycle started"

    def _start_sip_cycle(self) -> str:
        self.state.status.cleaning_status = "SIP Active"
        self._set_status(MachineStatus.CLEANING)
        return "SIP cycle started"

    def _reset_counters(self) -> str:
        self.state.counters.reset()
        return "All counters reset successfully"

    def _change_product(self, new_article) -> str:
        new_article = str(new_article)
        old_article = self.state.order.article
        self.state.order.article = new_article
        self._set_status(MachineStatus.STOPPING)
        self.schedule_transition(self.config.changeover_delay_s, MachineStatus.RUNNING)
        return f"Product changeover from {old_article} to {new_article} initiated"

    def _adjust_fill_volume(self, new_volume) -> str:
        new_volume = float(new_volume)
        old_volume = self.state.targets.fill_volume
        self.state.targets.fill_volume = new_volume
        return f"Fill volume adjusted from {old_volume}ml to {new_volume}ml"

    def _generate_lot_number(self) -> str:
        now = self.clock()
        parts = self.state.order.article.split("-")
        product = parts[2] if len(parts) > 2 and parts[2] else "PROD"
        sequence = int(self.rng.random() * 10000)

        lot_number = f"LOT-{now.year}-{product}-{sequence:04d}"
        self.state.traceability.lot_number = lot_number
        self.state.traceability.expiration_date = add_years(now.date(), 2).isoformat()
        return lot_number

    def _emergency_stop(self) -> str:
        self._set_status(MachineStatus.STOPPED)
        self.state.actuals.line_speed = 0
        logger.warning("Emergency stop activated")
        return "EMERGENCY STOP ACTIVATED"
