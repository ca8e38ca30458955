from .base import Actuator, SimulatedRelay
from .controller import ACTION_POWER_CYCLE, RelayController

__all__ = ["ACTION_POWER_CYCLE", "Actuator", "RelayController", "SimulatedRelay"]
