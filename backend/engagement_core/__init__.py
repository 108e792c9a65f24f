from .classification import (
    ClassificationGateway,
    ClassificationService,
    ConfirmationClassification,
    GeneralInquiryClassification,
    KeywordClassifier,
    VerificationClassification,
    extract_json_object,
)
from .errors import (
    ConfigurationError,
    EngagementError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from .lifecycle import NotificationLifecycle
from .models import InboundMessage, InteractionContext, InteractionResponse, PatientDataResult, ResponseMetadata
from .notifications import (
    EscalationData,
    EscalationNotification,
    MessagingTransport,
    NotificationFanout,
    SendOutcome,
    determine_priority,
)
from .orchestrator import InteractionOrchestrator, route_interaction
from .policy import DataAccessDecision, DataAccessPolicyEngine, DataAccessRequest, denial_message
from .registry import HandlerEntry, HandlerRegistry, entry_for, handles, select_handler
from .safety import EmergencyScreenResult, SafetyScreen

__all__ = [
    "ClassificationGateway",
    "ClassificationService",
    "ConfigurationError",
    "ConfirmationClassification",
    "DataAccessDecision",
    "DataAccessPolicyEngine",
    "DataAccessRequest",
    "EmergencyScreenResult",
    "EngagementError",
    "EscalationData",
    "EscalationNotification",
    "GeneralInquiryClassification",
    "HandlerEntry",
    "HandlerRegistry",
    "InboundMessage",
    "InteractionContext",
    "InteractionOrchestrator",
    "InteractionResponse",
    "InvalidTransitionError",
    "KeywordClassifier",
    "MessagingTransport",
    "NotFoundError",
    "NotificationFanout",
    "NotificationLifecycle",
    "PatientDataResult",
    "PersistenceError",
    "ResponseMetadata",
    "SafetyScreen",
    "SendOutcome",
    "UnauthorizedError",
    "UpstreamError",
    "ValidationError",
    "VerificationClassification",
    "determine_priority",
    "denial_message",
    "entry_for",
    "extract_json_object",
    "handles",
    "route_interaction",
    "select_handler",
]
