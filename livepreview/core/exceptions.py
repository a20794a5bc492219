"""Shared exceptions for livepreview core business logic.

Every error carries a stable ``code`` and the HTTP status the API layer
renders it with, so callers always get ``{code, message}`` instead of a
bare crash.
"""


class LivePreviewError(Exception):
    """Base exception for all livepreview errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"ok": False, "code": self.code, "message": self.message}


# Start-request collaborators
class ExtractionError(LivePreviewError):
    """Raised for a corrupt archive or an entry escaping the destination."""

    code = "EXTRACTION_FAILED"
    status_code = 400


class ProjectRootError(LivePreviewError):
    """Raised when a project directory is missing or unusable."""

    code = "PROJECT_ROOT_INVALID"
    status_code = 400


class InstallError(LivePreviewError):
    """Raised when dependency installation fails or times out."""

    code = "INSTALL_FAILED"
    status_code = 422

    def __init__(self, message: str, *, output_tail: str | None = None) -> None:
        super().__init__(message)
        self.output_tail = output_tail

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.output_tail:
            data["log"] = self.output_tail
        return data


# Launch-related exceptions
class PortExhausted(LivePreviewError):
    """Raised when no port in the configured range can be bound."""

    code = "PORT_EXHAUSTED"
    status_code = 503


class ProcessSpawnError(LivePreviewError):
    """Raised when the dev server executable cannot be started at all."""

    code = "PROCESS_SPAWN_FAILED"
    status_code = 500


class LaunchTimeout(LivePreviewError):
    """Raised when no strategy became healthy within the attempt budget."""

    code = "LAUNCH_TIMEOUT"
    status_code = 504

    def __init__(
        self,
        message: str,
        *,
        log_path: str | None = None,
        log_tail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.log_path = log_path
        self.log_tail = log_tail

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.log_tail:
            data["log"] = self.log_tail
        return data


class StartTimeout(LivePreviewError):
    """Raised when a whole start-preview request exceeds its wall-clock ceiling."""

    code = "START_TIMEOUT"
    status_code = 504


# Session-related exceptions
class ProxyTargetMissing(LivePreviewError):
    """Raised when a request names an unknown or expired session."""

    code = "PROXY_TARGET_MISSING"
    status_code = 404


class UpstreamUnavailable(LivePreviewError):
    """Raised when a session's dev server refuses or drops a proxied request."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502


class UpstreamTimeout(LivePreviewError):
    code = "UPSTREAM_TIMEOUT"
    status_code = 504


class UploadRejected(LivePreviewError):
    """Raised for an upload that is not a .zip or exceeds the size cap."""

    code = "UPLOAD_REJECTED"
    status_code = 400


class SessionConflictError(LivePreviewError):
    """Raised when inserting a session would break a registry invariant."""

    code = "SESSION_CONFLICT"
    status_code = 409


# Artifact-related exceptions
class ArtifactNotFoundError(LivePreviewError):
    """Raised when an artifact is not found."""

    code = "ARTIFACT_NOT_FOUND"
    status_code = 404


class ArtifactPathExistsError(LivePreviewError):
    """Raised when attempting to register an artifact with an existing path."""

    code = "ARTIFACT_EXISTS"
    status_code = 409


class ArtifactPathInvalidError(LivePreviewError):
    """Raised when an artifact path is missing or not a zip archive."""

    code = "ARTIFACT_INVALID"
    status_code = 400
