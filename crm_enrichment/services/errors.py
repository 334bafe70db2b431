class ServiceError(Exception):
    """Base class for errors raised synchronously to API callers."""


class ConfigurationError(ServiceError):
    """A required setting (e.g. the research agent API key) is missing."""


class NotFoundError(ServiceError):
    """The resource does not exist or is not owned by the caller."""


class NotAuthorizedError(ServiceError):
    """The caller is not allowed to act on the resource."""


class IntegrationError(ServiceError):
    """The CRM integration is unusable (bad key, disconnected, ...)."""
