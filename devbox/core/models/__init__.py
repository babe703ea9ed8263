"""
Domain models — the types the engine passes around.

All models are re-exported here for convenient access:

    from devbox.core.models import Step, Receipt, RunReport, ProvisionConfig
"""

from devbox.core.models.action import ErrorKind, Receipt
from devbox.core.models.config import PluginSpec, ProvisionConfig
from devbox.core.models.result import Outcome, RunReport, StepResult
from devbox.core.models.step import ProbeStatus, Step, StepState

__all__ = [
    # action.py
    "ErrorKind",
    "Receipt",
    # config.py
    "PluginSpec",
    "ProvisionConfig",
    # result.py
    "Outcome",
    "RunReport",
    "StepResult",
    # step.py
    "ProbeStatus",
    "Step",
    "StepState",
]
