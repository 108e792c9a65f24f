from .cache import ContextCache, InMemoryTTLCache
from .compliance import ComplianceCalculator, ComplianceStats, compliance_category, compute_compliance_rate
from .context_service import ContextResult, PatientContext, PatientContextService
from .conversation_store import ConversationStore
from .database import SQLiteEngagementDB
from .notes_store import HealthNoteStore, PatientVariableStore
from .notification_store import DataAccessAuditStore, NotificationStore
from .patient_lookup import PatientLookupResult, PatientLookupService
from .patient_repository import PatientRepository
from .phone_utils import generate_phone_alternatives, mask_phone, normalize_phone
from .reminder_store import ReminderStore

__all__ = [
    "ComplianceCalculator",
    "ComplianceStats",
    "ContextCache",
    "ContextResult",
    "ConversationStore",
    "DataAccessAuditStore",
    "HealthNoteStore",
    "InMemoryTTLCache",
    "NotificationStore",
    "PatientContext",
    "PatientContextService",
    "PatientLookupResult",
    "PatientLookupService",
    "PatientRepository",
    "PatientVariableStore",
    "ReminderStore",
    "SQLiteEngagementDB",
    "compliance_category",
    "compute_compliance_rate",
    "generate_phone_alternatives",
    "mask_phone",
    "normalize_phone",
]
