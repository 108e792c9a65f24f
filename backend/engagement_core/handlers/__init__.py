from .general_inquiry import GeneralInquiryHandler, PatientDataQueries, build_classifier_context
from .reminder_confirmation import ReminderConfirmationHandler
from .verification import VerificationHandler

__all__ = [
    "GeneralInquiryHandler",
    "PatientDataQueries",
    "ReminderConfirmationHandler",
    "VerificationHandler",
    "build_classifier_context",
]
