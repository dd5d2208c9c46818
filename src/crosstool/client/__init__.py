from .facade import CrossToolClient
from .health import HealthState, probe
from .launcher import LaunchFailed, LaunchFailure, ProcessLauncher, ServerHandle
from .ports import ClaimResult, PortArbiter
from .supervisor import Supervisor, SupervisorConfig, SupervisorState
from .gateway import RequestGateway

__all__ = [
    "CrossToolClient",
    "HealthState",
    "probe",
    "LaunchFailed",
    "LaunchFailure",
    "ProcessLauncher",
    "ServerHandle",
    "ClaimResult",
    "PortArbiter",
    "Supervisor",
    "SupervisorConfig",
    "SupervisorState",
    "RequestGateway",
]
