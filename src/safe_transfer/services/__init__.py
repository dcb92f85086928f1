"""Application services — use case orchestration."""

from safe_transfer.services.escrow_orchestrator import (
    DealView,
    EscrowOrchestrator,
    OrchestratorResult,
)
from safe_transfer.services.notifications import LoggingNotifier, dispatch_intents, render

__all__ = [
    "DealView",
    "EscrowOrchestrator",
    "OrchestratorResult",
    "LoggingNotifier",
    "dispatch_intents",
    "render",
]
