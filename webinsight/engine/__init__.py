"""WebInsight coordination layer: agent, coordinator and panel over one router."""
from .models import (
    ContentItem,
    ItemType,
    Message,
    MessageKind,
    Rect,
    Response,
    SelectionState,
    Severity,
    Tag,
    TaskRun,
    TaskStatus,
)
from .config import EngineConfig, ReportConfig
from .message_router import MessageRouter, RouterMetrics, Subscription
from .errors import (
    CollaboratorError,
    InferenceError,
    InvalidTransitionError,
    MessageRoutingError,
    PayloadSerializationError,
    SelectionAlreadyActiveError,
    SelectionError,
    ValidationError,
    WebInsightError,
)

__all__ = [
    # Models
    "ContentItem",
    "ItemType",
    "Message",
    "MessageKind",
    "Rect",
    "Response",
    "SelectionState",
    "Severity",
    "Tag",
    "TaskRun",
    "TaskStatus",
    # Config
    "EngineConfig",
    "ReportConfig",
    # Transport
    "MessageRouter",
    "RouterMetrics",
    "Subscription",
    # Contexts (lazy import)
    "PageAgent",
    "Coordinator",
    "PanelController",
    "ReportOrchestrator",
    "ItemCache",
    "SelectionStateMachine",
    # YAML config (lazy import)
    "WebInsightConfig",
    "load_yaml_config",
    # Errors
    "CollaboratorError",
    "InferenceError",
    "InvalidTransitionError",
    "MessageRoutingError",
    "PayloadSerializationError",
    "SelectionAlreadyActiveError",
    "SelectionError",
    "ValidationError",
    "WebInsightError",
]


def __getattr__(name: str):
    if name == "PageAgent":
        from .agent import PageAgent
        return PageAgent
    if name == "Coordinator":
        from .coordinator import Coordinator
        return Coordinator
    if name == "PanelController":
        from .panel import PanelController
        return PanelController
    if name == "ReportOrchestrator":
        from .orchestrator import ReportOrchestrator
        return ReportOrchestrator
    if name == "ItemCache":
        from .cache import ItemCache
        return ItemCache
    if name == "SelectionStateMachine":
        from .selection import SelectionStateMachine
        return SelectionStateMachine
    if name == "WebInsightConfig":
        from .yaml_config import WebInsightConfig
        return WebInsightConfig
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
