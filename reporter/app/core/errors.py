"""
Error taxonomy for the checklist report service.

Every failure the pipeline knows how to describe is a ReporterError
carrying the HTTP status it maps to. Component-specific errors
(template resolution, markup compilation, rendering, credential
exchange, upload) subclass these in their own modules.
"""


class ReporterError(RuntimeError):
    """Base class for failures surfaced to the caller."""

    status_code: int = 500


class InputError(ReporterError):
    """Malformed request body, missing field or invalid column name."""

    status_code = 400


class NotFoundError(ReporterError):
    """The source report record does not exist."""

    status_code = 404


class ConfigurationError(ReporterError):
    """Missing or malformed credentials, endpoints or template references."""


class StoreError(ReporterError):
    """The relational data store rejected a read or a write."""


class PublishError(ReporterError):
    """
    Raised by the artifact publishing stage.

    The coordinator treats this family as non-fatal: the report data
    stays saved and the caller receives a warning instead of a file.
    """
