"""Error taxonomy for the orchestration core.

Usage:
- Catch `TandemError` for any failure raised by this package.
- `ProviderError` is the only type the turn loop retries, and only when its
  classification says so.
- `NotFoundError` aborts the requested operation (unknown agent type,
  missing session).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from tandem.core.classifier import ErrorClassification


class TandemError(Exception):
    """Base error for the orchestration core.

    Args:
        message: Human-readable error description.
        details: Optional structured context for diagnosis.
    """

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TandemError):
    """Malformed input. Never retried, surfaced to the caller as-is."""

    def __init__(self, message: str, *, issues: Optional[list[str]] = None) -> None:
        super().__init__(message, details=issues)
        self.issues = issues or []


class AuthenticationError(TandemError):
    """No usable credential for a provider. Never retried.

    Args:
        message: What went wrong.
        provider_id: Provider the credential was resolved for.
        hint: Recovery suggestion shown to the user.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.hint = hint or (
            f"Connect {provider_id} again or supply an API key."
            if provider_id
            else "Supply an API key or reconnect the provider."
        )


class ProviderError(TandemError):
    """A model provider call failed.

    Args:
        message: Error description (usually the transport error's message).
        provider_id: Provider that was called.
        status_code: HTTP status returned by the provider, if any.
        classification: Result of classifying the underlying failure.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        classification: Optional["ErrorClassification"] = None,
    ) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.status_code = status_code
        self.classification = classification


class CircuitOpenError(ProviderError):
    """The provider's circuit breaker is refusing calls."""

    def __init__(self, provider_id: str, retry_at: Optional[float] = None) -> None:
        super().__init__(
            f"Circuit breaker is OPEN for provider {provider_id}",
            provider_id=provider_id,
        )
        self.retry_at = retry_at


class ToolExecutionError(TandemError):
    """A tool raised. Captured as an error tool-result; the turn continues."""

    def __init__(self, message: str, *, tool_name: str = "") -> None:
        super().__init__(message)
        self.tool_name = tool_name


class NotFoundError(TandemError):
    """A referenced entity does not exist.

    Args:
        kind: Entity kind, e.g. "agent" or "session".
        identifier: The identifier that was looked up.
    """

    def __init__(self, kind: str, identifier: str, message: Optional[str] = None) -> None:
        super().__init__(message or f'{kind.capitalize()} "{identifier}" not found')
        self.kind = kind
        self.identifier = identifier
