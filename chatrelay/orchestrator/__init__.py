from chatrelay.orchestrator.core import ConversationOrchestrator, TurnRecord, TurnState
from chatrelay.orchestrator.events import Emitter, ListEmitter, SSEEmitter, TurnEvent

__all__ = [
    "ConversationOrchestrator",
    "Emitter",
    "ListEmitter",
    "SSEEmitter",
    "TurnEvent",
    "TurnRecord",
    "TurnState",
]
