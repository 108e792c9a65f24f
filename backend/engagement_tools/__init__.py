from .llm_client import LLMClassificationClient, provider_candidates
from .messaging import HttpMessagingTransport, LoggingMessagingTransport
from .patient_queries import (
    HealthNotesQueryService,
    MedicationQueryService,
    PatientDataQueryService,
    format_reminders,
    parse_health_notes_query,
)

__all__ = [
    "HealthNotesQueryService",
    "HttpMessagingTransport",
    "LLMClassificationClient",
    "LoggingMessagingTransport",
    "MedicationQueryService",
    "PatientDataQueryService",
    "format_reminders",
    "parse_health_notes_query",
    "provider_candidates",
]
