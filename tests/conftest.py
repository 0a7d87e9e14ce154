"""Shared fixtures: scripted randomness and a virtual clock."""

from datetime import datetime

import pytest

from fluidfill_sim.config import Config
from fluidfill_sim.simulator import Simulator
from fluidfill_sim.state import MachineState, MachineStatus
from fluidfill_sim.timers import VirtualTimerService


class ScriptedRandom:
    """Returns queued draws, then 0.5 (a good bottle with zero noise)."""

    def __init__(self, draws=None):
        self.draws = list(draws or [])
        self.calls = 0

    def queue(self, *draws):
        self.draws.extend(draws)

    def random(self):
        self.calls += 1
        if self.draws:
            return self.draws.pop(0)
        return 0.5


FIXED_NOW = datetime(2025, 3, 14, 10, 30)


@pytest.fixture
def rng():
    return ScriptedRandom()


@pytest.fixture
def timers():
    return VirtualTimerService()


@pytest.fixture
def config():
    return Config.default()


@pytest.fixture
def state():
    return MachineState.default()


@pytest.fixture
def running_state():
    s = MachineState.default()
    s.machine_status = MachineStatus.RUNNING
    return s


@pytest.fixture
def simulator(config, timers, rng):
    return Simulator(config, timers=timers, rng=rng, clock=lambda: FIXED_NOW)
