"""Phase orchestration and cleanup."""

from tierdeploy.orchestrator.cleanup import (
    CleanupAction,
    CleanupEngine,
    CleanupItem,
    CleanupMode,
    CleanupReport,
)
from tierdeploy.orchestrator.orchestrator import (
    PhaseOrchestrator,
    PhaseResult,
    PhaseStatus,
    RunMode,
    RunResult,
    RunStatus,
)
from tierdeploy.orchestrator.phases import PHASES, Phase, PhaseContext

__all__ = [
    'CleanupAction',
    'CleanupEngine',
    'CleanupItem',
    'CleanupMode',
    'CleanupReport',
    'PhaseOrchestrator',
    'PhaseResult',
    'PhaseStatus',
    'RunMode',
    'RunResult',
    'RunStatus',
    'PHASES',
    'Phase',
    'PhaseContext',
]
