from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .state_store.quota import PaywallContext


class WorthItError(RuntimeError):
    retryable = False


class ValidationError(WorthItError):
    """Malformed content reference. Raised before any network or quota cost."""


class QuotaExceeded(WorthItError):
    def __init__(self, paywall: "PaywallContext", message: str = "Daily analysis limit reached.") -> None:
        super().__init__(message)
        self.paywall = paywall


class TransientNetworkError(WorthItError):
    retryable = True


class NotFoundError(WorthItError):
    def __init__(self, message: str, *, status: int = 404) -> None:
        super().__init__(message)
        self.status = status


class BackendDecodingError(WorthItError):
    retryable = True


class PartialFetchFailure(WorthItError):
    retryable = True

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause


class LockTimeout(WorthItError):
    def __init__(self, scope: str) -> None:
        super().__init__(f"Invocation already running for scope {scope!r}.")
        self.scope = scope


class MissingAnalysisError(WorthItError):
    pass
