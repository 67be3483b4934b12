"""Exception types shared by the storage, knowledge and API layers."""


class NeyasbookError(Exception):
    """Base class for every error raised by the backend."""
    status_code = 500


class NotFoundError(NeyasbookError):
    """A manifest, chapter, entity or blob key does not exist."""
    status_code = 404


class InvalidRequestError(NeyasbookError):
    """Missing x-project-id header, malformed body or unsafe identifier."""
    status_code = 400


class ExtractionFailure(NeyasbookError):
    """The sweep LLM call failed or returned an unusable payload."""

    def __init__(self, message: str, chapter_id: str = None):
        super().__init__(message)
        self.chapter_id = chapter_id


class PatchApplicationFailure(NeyasbookError):
    """A suggested edit could not be located in the chapter document."""
    status_code = 409


class UpstreamFailure(NeyasbookError):
    """The LLM provider or the storage backend is unavailable."""
    status_code = 500
