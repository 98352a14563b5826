from __future__ import annotations


class TranslationError(Exception):
    reason = "translation_error"

    def __init__(self, message: str = "", detail: str | None = None) -> None:
        super().__init__(message or self.reason)
        self.detail = detail


class BackendError(TranslationError):
    reason = "backend_error"


class BackendUnavailable(BackendError):
    reason = "backend_unavailable"


class BackendTimeout(BackendError):
    reason = "backend_timeout"


class BackendBadResponse(BackendError):
    reason = "backend_bad_response"

    def __init__(self, message: str = "", status: int | None = None) -> None:
        super().__init__(message, detail=str(status) if status is not None else None)
        self.status = status


class BackendMalformed(BackendError):
    reason = "backend_malformed"


class UnknownLanguage(TranslationError):
    reason = "unknown_language"


class CannotRemoveSource(TranslationError):
    reason = "cannot_remove_source"


class PersistenceFailed(TranslationError):
    reason = "persistence_failed"


class BuildInProgress(TranslationError):
    reason = "build_in_progress"


class MarkdownUnbalanced(TranslationError):
    """Warning kind: logged by the markdown translator, never raised to callers."""

    reason = "markdown_unbalanced"
