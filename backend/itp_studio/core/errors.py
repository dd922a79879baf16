"""Error taxonomy shared by the API, the pipeline service and the worker."""
from __future__ import annotations


class StudioError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class PromptValidationError(StudioError):
    """Malformed prompt or options; rejected before any job exists."""

    status_code = 400


class NotFoundError(StudioError):
    status_code = 404


class ConflictError(StudioError):
    """The request is well formed but the product is not in a state that allows it."""

    status_code = 409


class JobStateError(StudioError):
    """Illegal job status transition."""

    status_code = 409


class ProviderError(StudioError):
    """A model provider call failed or returned a terminal failure."""

    status_code = 502


class UploadError(StudioError):
    """Storing a generated image failed after the provider succeeded."""

    status_code = 502
