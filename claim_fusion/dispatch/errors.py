"""Provider error taxonomy and classification."""

from __future__ import annotations

import asyncio

import anthropic
import httpx

from claim_fusion.contracts import ClassifiedError, ErrorType

DEFAULT_RATE_LIMIT_RETRY_MS = 60_000


class ProviderError(RuntimeError):
    """Upstream provider failure carrying a transport code and optional HTTP status."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "provider_error",
        status: int | None = None,
        retry_after_ms: int | None = None,
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status = status
        self.retry_after_ms = retry_after_ms
        self.details = details or {}


class ProviderAuthError(ProviderError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message, code="auth_required", status=status)


class InputTooLongError(ProviderError):
    def __init__(self, message: str, *, provider_ids: list[str] | None = None) -> None:
        super().__init__(message, code="input_too_long")
        self.provider_ids = provider_ids or []


class CircuitOpenError(ProviderError):
    def __init__(self, provider_id: str, retry_after_ms: int | None) -> None:
        super().__init__(
            f"Circuit open for {provider_id}",
            code="circuit_open",
            retry_after_ms=retry_after_ms,
        )
        self.provider_id = provider_id


class AllProvidersFailedError(RuntimeError):
    """Every requested provider was skipped or failed without recoverable text."""

    def __init__(self, errors: dict[str, ClassifiedError]) -> None:
        self.errors = errors
        self.all_auth = bool(errors) and all(
            e["error_type"] == ErrorType.PROVIDER_AUTH_FAILED for e in errors.values()
        )
        if self.all_auth:
            msg = f"Authentication failed for all providers: {', '.join(sorted(errors))}"
        else:
            details = "; ".join(f"{pid}: {e['message']}" for pid, e in sorted(errors.items()))
            msg = f"All providers failed ({details})" if details else "All providers failed"
        super().__init__(msg)


def _classified(
    error_type: ErrorType,
    code: str,
    message: str,
    *,
    retryable: bool,
    retry_after_ms: int | None = None,
    requires_reauth: bool = False,
) -> ClassifiedError:
    return ClassifiedError(
        error_type=error_type,
        code=code,
        message=message,
        retryable=retryable,
        retry_after_ms=retry_after_ms,
        requires_reauth=requires_reauth,
    )


def _from_status(status: int, message: str, retry_after_ms: int | None) -> ClassifiedError | None:
    if status in (401, 403):
        return _classified(
            ErrorType.PROVIDER_AUTH_FAILED,
            "auth_required",
            message,
            retryable=False,
            requires_reauth=True,
        )
    if status == 429:
        return _classified(
            ErrorType.PROVIDER_ERROR,
            "rate_limited",
            message,
            retryable=True,
            retry_after_ms=retry_after_ms or DEFAULT_RATE_LIMIT_RETRY_MS,
        )
    if status == 413:
        return _classified(ErrorType.INPUT_TOO_LONG, "input_too_long", message, retryable=True)
    if status >= 500:
        return _classified(ErrorType.PROVIDER_ERROR, "upstream", message, retryable=True)
    return None


def classify_error(exc: BaseException) -> ClassifiedError:
    """Map any exception raised during a provider call onto the error taxonomy."""
    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, CircuitOpenError):
        return _classified(
            ErrorType.CIRCUIT_OPEN,
            "circuit_open",
            message,
            retryable=True,
            retry_after_ms=exc.retry_after_ms,
        )
    if isinstance(exc, InputTooLongError):
        return _classified(ErrorType.INPUT_TOO_LONG, "input_too_long", message, retryable=True)
    if isinstance(exc, ProviderAuthError):
        return _classified(
            ErrorType.PROVIDER_AUTH_FAILED,
            "auth_required",
            message,
            retryable=False,
            requires_reauth=True,
        )
    if isinstance(exc, ProviderError):
        if exc.code == "empty_response":
            return _classified(ErrorType.EMPTY_RESPONSE, exc.code, message, retryable=True)
        if exc.status is not None:
            by_status = _from_status(exc.status, message, exc.retry_after_ms)
            if by_status is not None:
                return by_status
        if exc.code == "rate_limited":
            return _classified(
                ErrorType.PROVIDER_ERROR,
                "rate_limited",
                message,
                retryable=True,
                retry_after_ms=exc.retry_after_ms or DEFAULT_RATE_LIMIT_RETRY_MS,
            )
        return _classified(
            ErrorType.PROVIDER_ERROR,
            exc.code,
            message,
            retryable=exc.code in ("timeout", "network", "upstream"),
            retry_after_ms=exc.retry_after_ms,
        )

    # Anthropic SDK
    if isinstance(exc, anthropic.AuthenticationError | anthropic.PermissionDeniedError):
        return _classified(
            ErrorType.PROVIDER_AUTH_FAILED,
            "auth_required",
            message,
            retryable=False,
            requires_reauth=True,
        )
    if isinstance(exc, anthropic.RateLimitError):
        return _classified(
            ErrorType.PROVIDER_ERROR,
            "rate_limited",
            message,
            retryable=True,
            retry_after_ms=DEFAULT_RATE_LIMIT_RETRY_MS,
        )
    if isinstance(exc, anthropic.APITimeoutError):
        return _classified(ErrorType.PROVIDER_ERROR, "timeout", message, retryable=True)
    if isinstance(exc, anthropic.APIConnectionError):
        return _classified(ErrorType.PROVIDER_ERROR, "network", message, retryable=True)
    if isinstance(exc, anthropic.APIStatusError):
        by_status = _from_status(exc.status_code, message, None)
        if by_status is not None:
            return by_status

    # httpx
    if isinstance(exc, httpx.HTTPStatusError):
        by_status = _from_status(exc.response.status_code, message, _retry_after_ms(exc.response))
        if by_status is not None:
            return by_status
    if isinstance(exc, httpx.TimeoutException):
        return _classified(ErrorType.PROVIDER_ERROR, "timeout", message, retryable=True)
    if isinstance(exc, httpx.TransportError):
        return _classified(ErrorType.PROVIDER_ERROR, "network", message, retryable=True)

    if isinstance(exc, asyncio.TimeoutError | TimeoutError):
        return _classified(ErrorType.PROVIDER_ERROR, "timeout", message, retryable=True)
    if isinstance(exc, asyncio.CancelledError):
        return _classified(ErrorType.PROVIDER_ERROR, "aborted", "Request aborted", retryable=True)

    return _classified(ErrorType.PROVIDER_ERROR, "unknown", message, retryable=False)


def _retry_after_ms(response: httpx.Response) -> int | None:
    raw = response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return int(float(raw) * 1000)
    except ValueError:
        return None
