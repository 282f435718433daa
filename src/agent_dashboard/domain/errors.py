class DashboardError(Exception):
    """Base class for errors reported synchronously to the caller."""


class NotFoundError(DashboardError):
    """Raised when a referenced entity is absent or not owned by the caller."""


class ValidationError(DashboardError):
    """Raised when caller input is malformed."""
