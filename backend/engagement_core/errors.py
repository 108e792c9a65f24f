from __future__ import annotations


class EngagementError(Exception):
    code = "engagement_error"


class ValidationError(EngagementError):
    code = "validation_error"


class NotFoundError(EngagementError):
    code = "not_found"


class UnauthorizedError(EngagementError):
    code = "unauthorized"


class UpstreamError(EngagementError):
    code = "upstream_error"


class PersistenceError(EngagementError):
    code = "persistence_error"


class ConfigurationError(EngagementError):
    code = "configuration_error"


class InvalidTransitionError(EngagementError):
    code = "invalid_transition"
