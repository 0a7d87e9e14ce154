"""Tests for the machine state model."""

import json

import pytest

from fluidfill_sim.alarms import AlarmKind, AlarmRecord
from fluidfill_sim.state import MachineState, MachineStatus, MachineView, RejectReason


class TestMachineState:
    """Tests for MachineState defaults and helpers."""

    def test_power_on_defaults(self, state):
        assert state.machine_status is MachineStatus.STARTING
        assert state.order.order_number == "PO-2024-JUICE-5567"
        assert state.order.quantity == 25000
        assert state.targets.fill_volume == 1000.0
        assert state.targets.line_speed == 450
        assert state.actuals.product_level_tank == 67.3
        assert state.counters.total == 1254249
        assert state.order_counters.total == 13000
        assert state.bad_streak == 0
        assert state.active_alarms == []

    def test_defaults_are_independent(self):
        a = MachineState.default()
        b = MachineState.default()

        a.counters.good += 1
        a.active_alarms.append("x")

        assert b.counters.good == 1247589
        assert b.active_alarms == []

    def test_machine_status_property(self, state):
        state.machine_status = MachineStatus.CLEANING

        assert state.status.machine_status is MachineStatus.CLEANING

    def test_recompute_progress(self, state):
        state.order.quantity = 400
        state.order_counters.total = 100

        state.recompute_progress()

        assert state.order.progress == 25.0


class TestCounters:
    """Tests for the counter blocks."""

    def test_add_reject_by_reason(self, state):
        c = state.counters
        c.reset()

        for reason in (RejectReason.VOLUME, RejectReason.WEIGHT, RejectReason.CAP, RejectReason.OTHER, RejectReason.CAP):
            c.add_reject(reason)
        c.recompute_total_bad()

        assert (c.bad_volume, c.bad_weight, c.bad_cap, c.bad_other) == (1, 1, 2, 1)
        assert c.total_bad == 5

    def test_reset_zeroes_everything(self, state):
        state.counters.reset()
        state.order_counters.reset()

        assert all(v == 0 for v in vars(state.counters).values())
        assert all(v == 0 for v in vars(state.order_counters).values())


class TestMachineView:
    """Tests for read access."""

    def test_accessors(self, state):
        view = MachineView(state)

        assert view.machine_name == "FluidFill Express #2"
        assert view.serial_number == "FFE2000-2023-002"
        assert view.article == "ART-JUICE-APPLE-1L"
        assert view.current_station == "Station 12"
        assert view.cleaning_status == "Normal Production"
        assert view.good_bottles == 1247589
        assert view.total_bad_bottles == 6600
        assert view.lot_number == "LOT-2024-APPLE-0456"
        assert view.expiration_date == "2026-09-23"

    @pytest.mark.parametrize(
        "accessor,path",
        [
            ("plant", "MachineInformation/Plant"),
            ("production_segment", "MachineInformation/ProductionSegment"),
            ("production_line", "MachineInformation/ProductionLine"),
            ("quantity", "ProductionOrder/Quantity"),
            ("progress", "ProductionOrder/Progress"),
            ("target_fill_volume", "ProcessParameters/Targets/FillVolume"),
            ("target_line_speed", "ProcessParameters/Targets/LineSpeed"),
            ("target_product_temp", "ProcessParameters/Targets/ProductTemperature"),
            ("target_co2_pressure", "ProcessParameters/Targets/CO2Pressure"),
            ("target_cap_torque", "ProcessParameters/Targets/CapTorque"),
            ("target_cycle_time", "ProcessParameters/Targets/CycleTime"),
            ("actual_fill_volume", "ProcessParameters/Actuals/FillVolume"),
            ("actual_line_speed", "ProcessParameters/Actuals/LineSpeed"),
            ("actual_product_temp", "ProcessParameters/Actuals/ProductTemperature"),
            ("actual_co2_pressure", "ProcessParameters/Actuals/CO2Pressure"),
            ("actual_cap_torque", "ProcessParameters/Actuals/CapTorque"),
            ("actual_cycle_time", "ProcessParameters/Actuals/CycleTime"),
            ("fill_accuracy_deviation", "ProcessParameters/Actuals/FillAccuracyDeviation"),
            ("tank_level", "ProcessParameters/Actuals/ProductLevelTank"),
            ("weight_check", "QualityControl/WeightCheck"),
            ("level_check", "QualityControl/LevelCheck"),
            ("bad_volume_bottles", "ProductionCounters/Total/BadBottlesVolume"),
            ("bad_weight_bottles", "ProductionCounters/Total/BadBottlesWeight"),
            ("bad_cap_bottles", "ProductionCounters/Total/BadBottlesCap"),
            ("bad_other_bottles", "ProductionCounters/Total/BadBottlesOther"),
            ("total_bottles", "ProductionCounters/Total/TotalBottles"),
            ("order_good_bottles", "ProductionCounters/Order/GoodBottles"),
            ("order_bad_bottles", "ProductionCounters/Order/BadBottles"),
            ("order_total_bottles", "ProductionCounters/Order/TotalBottles"),
        ],
    )
    def test_accessor_matches_snapshot(self, state, accessor, path):
        view = MachineView(state)

        assert getattr(view, accessor) == view.snapshot()[path]

    def test_quality_and_reason_accessors(self, state):
        state.status.weight_check = "Fail"
        state.counters.bad_cap = 7
        state.order_counters.bad = 2
        view = MachineView(state)

        assert view.weight_check == "Fail"
        assert view.level_check == "Pass"
        assert view.bad_cap_bottles == 7
        assert view.order_bad_bottles == 2
        assert view.target_co2_pressure == 3.8
        assert view.actual_cycle_time == 2.68

    def test_view_is_live(self, state):
        view = MachineView(state)

        state.order.article = "ART-JUICE-ORANGE-1L"

        assert view.article == "ART-JUICE-ORANGE-1L"

    def test_snapshot_paths(self, state):
        snapshot = MachineView(state).snapshot()

        assert snapshot["ProductionOrder/Quantity"] == 25000
        assert snapshot["ProcessParameters/Actuals/FillAccuracyDeviation"] == -0.8
        assert snapshot["QualityControl/WeightCheck"] == "Pass"
        assert snapshot["ProductionCounters/Total/BadBottlesCap"] == 1156
        assert snapshot["ProductionCounters/Order/BadBottles"] == 153
        assert snapshot["Traceability/ExpirationDate"] == "2026-09-23"

    def test_snapshot_serialises_alarms(self, state):
        state.active_alarms = [
            AlarmRecord(
                parameter="Product Level Tank",
                kind=AlarmKind.INFORMATIONAL,
                actual=12.3,
                message="Low product level",
            )
        ]

        alarms = json.loads(MachineView(state).snapshot()["Alarms/ActiveAlarms"])

        assert alarms == [
            {
                "parameter": "Product Level Tank",
                "type": "Informational",
                "message": "Low product level",
                "actual": 12.3,
            }
        ]
