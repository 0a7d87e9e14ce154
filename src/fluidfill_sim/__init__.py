"""FluidFill Simulator - beverage filling machine simulation for telemetry testing."""

__version__ = "0.1.0"

from .simulator import Simulator
from .config import Config
from .state import MachineState, MachineStatus

__all__ = ["Simulator", "Config", "MachineState", "MachineStatus", "__version__"]
