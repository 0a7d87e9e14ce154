"""Tests for the remote methods."""

from dataclasses import asdict
from datetime import date, datetime

import pytest

from fluidfill_sim.commands import (
    CommandOutcome,
    CommandProcessor,
    CommandResult,
    add_years,
)
from fluidfill_sim.config import SimulationConfig
from fluidfill_sim.state import MachineStatus

from conftest import FIXED_NOW


ORDER_ARGS = (
    "PO-2025-COLA-0001",
    "ART-SODA-COLA-500ML",
    500,
    500.0,
    600,
    4.0,
    4.2,
    18.0,
    2.0,
)


@pytest.fixture
def processor(state, timers, rng):
    return CommandProcessor(state, timers.call_later, SimulationConfig(), rng, clock=lambda: FIXED_NOW)


class TestDispatch:
    """Tests for invoke() and the result envelope."""

    def test_all_methods_registered(self, processor):
        assert sorted(processor.method_names) == sorted(
            [
                "StartMachine",
                "StopMachine",
                "LoadProductionOrder",
                "EnterMaintenanceMode",
                "StartCIPCycle",
                "StartSIPCycle",
                "ResetCounters",
                "ChangeProduct",
                "AdjustFillVolume",
                "GenerateLotNumber",
                "EmergencyStop",
            ]
        )

    def test_unknown_method_fails(self, processor):
        result = processor.invoke("SelfDestruct")

        assert result.outcome is CommandOutcome.FAILED
        assert result.error == "Unknown method: SelfDestruct"

    def test_wrong_argument_count_fails(self, processor, state):
        result = processor.invoke("AdjustFillVolume")

        assert result.outcome is CommandOutcome.FAILED
        assert state.targets.fill_volume == 1000.0

    def test_result_to_dict(self):
        result = CommandResult(CommandOutcome.SUCCESS, output="Machine starting")

        assert result.ok
        assert result.to_dict() == {"outcome": "success", "output": "Machine starting", "error": None}


class TestStartStop:
    """Tests for StartMachine and StopMachine."""

    def test_start_from_stopped(self, processor, state, timers):
        state.machine_status = MachineStatus.STOPPED

        result = processor.start_machine()

        assert result.ok
        assert result.output == "Machine starting"
        assert state.machine_status is MachineStatus.STARTING

        timers.advance(2)
        assert state.machine_status is MachineStatus.STARTING

        timers.advance(1)
        assert state.machine_status is MachineStatus.RUNNING

    def test_second_start_is_rejected(self, processor, state):
        state.machine_status = MachineStatus.STOPPED
        processor.start_machine()

        result = processor.start_machine()

        assert result.outcome is CommandOutcome.REJECTED
        assert result.output is None
        assert state.machine_status is MachineStatus.STARTING

    @pytest.mark.parametrize(
        "status",
        [
            MachineStatus.RUNNING,
            MachineStatus.STARTING,
            MachineStatus.STOPPING,
            MachineStatus.MAINTENANCE,
            MachineStatus.CLEANING,
            MachineStatus.ERROR,
        ],
    )
    def test_start_rejected_unless_stopped(self, processor, state, timers, status):
        state.machine_status = status

        assert processor.start_machine().outcome is CommandOutcome.REJECTED
        assert timers.pending == 0

    @pytest.mark.parametrize(
        "status",
        [
            MachineStatus.RUNNING,
            MachineStatus.ERROR,
            MachineStatus.MAINTENANCE,
            MachineStatus.CLEANING,
        ],
    )
    def test_stop_from_stoppable_status(self, processor, state, timers, status):
        state.machine_status = status

        result = processor.stop_machine()

        assert result.output == "Machine stopping"
        assert state.machine_status is MachineStatus.STOPPING

        timers.advance(3)
        assert state.machine_status is MachineStatus.STOPPED

    @pytest.mark.parametrize(
        "status",
        [MachineStatus.STOPPED, MachineStatus.STARTING, MachineStatus.STOPPING],
    )
    def test_stop_rejected(self, processor, state, status):
        state.machine_status = status

        assert processor.stop_machine().outcome is CommandOutcome.REJECTED
        assert state.machine_status is status


class TestLoadProductionOrder:
    """Tests for LoadProductionOrder."""

    def test_overwrites_order_and_targets(self, processor, state):
        result = processor.load_production_order(*ORDER_ARGS)

        assert result.output == "Production order PO-2025-COLA-0001 loaded successfully"
        assert state.order.order_number == "PO-2025-COLA-0001"
        assert state.order.article == "ART-SODA-COLA-500ML"
        assert state.order.quantity == 500
        assert state.targets.fill_volume == 500.0
        assert state.targets.line_speed == 600
        assert state.targets.product_temp == 4.0
        assert state.targets.co2_pressure == 4.2
        assert state.targets.cap_torque == 18.0
        assert state.targets.cycle_time == 2.0

    def test_resets_order_counters_only(self, processor, state):
        total = state.counters.total

        processor.load_production_order(*ORDER_ARGS)

        assert (state.order_counters.good, state.order_counters.bad, state.order_counters.total) == (0, 0, 0)
        assert state.order.progress == 0.0
        assert state.counters.total == total

    def test_coerces_string_arguments(self, processor, state):
        args = ("PO-1", "ART-A-B", "750", "330", "400", "5", "3.5", "20", "2.5")

        assert processor.invoke("LoadProductionOrder", *args).ok
        assert state.order.quantity == 750
        assert state.targets.line_speed == 400
        assert state.targets.fill_volume == 330.0

    @pytest.mark.parametrize("quantity", ["abc", -1])
    def test_invalid_quantity_leaves_state_untouched(self, processor, state, quantity):
        before = asdict(state)
        args = list(ORDER_ARGS)
        args[2] = quantity

        result = processor.invoke("LoadProductionOrder", *args)

        assert result.outcome is CommandOutcome.FAILED
        assert result.error
        assert asdict(state) == before

    def test_invalid_target_leaves_state_untouched(self, processor, state):
        before = asdict(state)
        args = list(ORDER_ARGS)
        args[8] = "fast"

        assert processor.invoke("LoadProductionOrder", *args).outcome is CommandOutcome.FAILED
        assert asdict(state) == before


class TestModes:
    """Tests for maintenance, cleaning and counter reset."""

    def test_enter_maintenance(self, processor, state):
        result = processor.enter_maintenance_mode()

        assert result.output == "Entered maintenance mode"
        assert state.machine_status is MachineStatus.MAINTENANCE

    def test_cip_cycle(self, processor, state):
        result = processor.start_cip_cycle()

        assert result.output == "CIP cycle started"
        assert state.machine_status is MachineStatus.CLEANING
        assert state.status.cleaning_status == "CIP Active"

    def test_sip_cycle(self, processor, state):
        result = processor.start_sip_cycle()

        assert result.output == "SIP cycle started"
        assert state.machine_status is MachineStatus.CLEANING
        assert state.status.cleaning_status == "SIP Active"

    def test_reset_counters_is_idempotent(self, processor, state):
        order_total = state.order_counters.total

        assert processor.reset_counters().output == "All counters reset successfully"
        assert processor.reset_counters().ok

        c = state.counters
        assert (c.good, c.total_bad, c.total) == (0, 0, 0)
        assert (c.bad_volume, c.bad_weight, c.bad_cap, c.bad_other) == (0, 0, 0, 0)
        assert state.order_counters.total == order_total


class TestChangeProduct:
    """Tests for ChangeProduct."""

    def test_changeover(self, processor, state, timers):
        state.machine_status = MachineStatus.RUNNING

        result = processor.change_product("ART-JUICE-ORANGE-1L")

        assert result.output == (
            "Product changeover from ART-JUICE-APPLE-1L to ART-JUICE-ORANGE-1L initiated"
        )
        assert state.order.article == "ART-JUICE-ORANGE-1L"
        assert state.machine_status is MachineStatus.STOPPING

        timers.advance(4.9)
        assert state.machine_status is MachineStatus.STOPPING

        timers.advance(0.2)
        assert state.machine_status is MachineStatus.RUNNING


class TestAdjustFillVolume:
    """Tests for AdjustFillVolume."""

    def test_reports_old_and_new_volume(self, processor, state):
        result = processor.adjust_fill_volume(1050)

        assert result.output == "Fill volume adjusted from 1000.0ml to 1050.0ml"
        assert state.targets.fill_volume == 1050.0

    def test_non_numeric_volume_fails(self, processor, state):
        result = processor.invoke("AdjustFillVolume", "lots")

        assert result.outcome is CommandOutcome.FAILED
        assert state.targets.fill_volume == 1000.0


class TestGenerateLotNumber:
    """Tests for GenerateLotNumber."""

    def test_lot_number_from_article(self, processor, state):
        result = processor.generate_lot_number()

        assert result.output == "LOT-2025-APPLE-5000"
        assert state.traceability.lot_number == "LOT-2025-APPLE-5000"
        assert state.traceability.expiration_date == "2027-03-14"

    def test_sequence_is_zero_padded(self, processor, rng):
        rng.queue(0.00421)

        assert processor.generate_lot_number().output == "LOT-2025-APPLE-0042"

    @pytest.mark.parametrize("article", ["WATER", "ART-JUICE-", "ART-JUICE"])
    def test_missing_product_segment(self, processor, state, article):
        state.order.article = article

        assert processor.generate_lot_number().output == "LOT-2025-PROD-5000"

    def test_leap_day_expiration(self, state, timers, rng):
        processor = CommandProcessor(
            state, timers.call_later, rng=rng, clock=lambda: datetime(2024, 2, 29, 8, 0)
        )

        processor.generate_lot_number()

        assert state.traceability.expiration_date == "2026-03-01"

    def test_add_years(self):
        assert add_years(date(2025, 3, 14), 2) == date(2027, 3, 14)
        assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)
        assert add_years(date(2024, 2, 29), 1) == date(2025, 3, 1)


class TestEmergencyStop:
    """Tests for EmergencyStop and superseded transitions."""

    @pytest.mark.parametrize("status", list(MachineStatus))
    def test_from_every_status(self, processor, state, timers, status):
        state.machine_status = status
        processor.schedule_transition(1.0, MachineStatus.RUNNING)

        result = processor.emergency_stop()

        assert result.output == "EMERGENCY STOP ACTIVATED"
        assert state.machine_status is MachineStatus.STOPPED
        assert state.actuals.line_speed == 0
        assert processor.pending_transition is None

        timers.advance(10)
        assert state.machine_status is MachineStatus.STOPPED

    def test_emergency_stop_cancels_start(self, processor, state, timers):
        state.machine_status = MachineStatus.STOPPED
        processor.start_machine()

        processor.emergency_stop()
        timers.advance(5)

        assert state.machine_status is MachineStatus.STOPPED

    def test_last_writer_wins_without_supersede(self, state, timers, rng):
        processor = CommandProcessor(
            state,
            timers.call_later,
            SimulationConfig(cancel_on_supersede=False),
            rng,
            clock=lambda: FIXED_NOW,
        )
        state.machine_status = MachineStatus.STOPPED
        processor.start_machine()

        processor.emergency_stop()
        assert state.machine_status is MachineStatus.STOPPED

        timers.advance(3)
        assert state.machine_status is MachineStatus.RUNNING

    def test_maintenance_supersedes_stop(self, processor, state, timers):
        state.machine_status = MachineStatus.RUNNING
        processor.stop_machine()

        processor.enter_maintenance_mode()
        timers.advance(3)

        assert state.machine_status is MachineStatus.MAINTENANCE
