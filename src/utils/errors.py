class KtwoError(Exception):
    """Base class for every error the vault engine raises on purpose."""


class AuthenticationFailed(KtwoError):
    def __init__(self, message: str = "Invalid passphrase or corrupted vault") -> None:
        super().__init__(message)


class InvalidParameters(KtwoError):
    pass


class MalformedEditState(KtwoError):
    pass


class RemoteUnavailable(KtwoError):
    pass


class NotFound(KtwoError):
    pass


class AlreadyExists(KtwoError):
    pass


class SyncAborted(KtwoError):
    """A sync pipeline stage failed; nothing after `stage` was applied."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"sync aborted at {stage}: {cause}")
