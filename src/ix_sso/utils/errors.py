"""Error classification, user-facing messages and error logging."""

import httpx

from ..config import SSOSettings
from ..exceptions import (
    AuthenticationError,
    ConfigurationError,
    IdPConnectionError,
    ProvisioningError,
    SSOError,
    TokenError,
    TokenExpiredError,
)
from .logging import get_logger, redact

USER_MESSAGES = {
    "connection.failed": "The identity provider is currently unavailable. Please try again later.",
    "connection.timeout": "The identity provider took too long to respond. Please try again.",
    "connection.unreachable": "The identity provider could not be reached.",
    "authentication.failed": "Single sign-on failed. Please try again.",
    "authentication.access_denied": "Access was denied by the identity provider.",
    "token.invalid": "Your session is no longer valid. Please sign in again.",
    "token.expired": "Your session has expired. Please sign in again.",
    "provisioning.failed": "Your account could not be set up. Please contact your administrator.",
    "configuration.invalid": "Single sign-on is not configured correctly. "
    "Please contact your administrator.",
    "generic.unknown": "An unexpected error occurred during single sign-on.",
}

# Most specific class first
_MESSAGE_KEYS = [
    (TokenExpiredError, "token.expired"),
    (TokenError, "token.invalid"),
    (IdPConnectionError, "connection.failed"),
    (AuthenticationError, "authentication.failed"),
    (ProvisioningError, "provisioning.failed"),
    (ConfigurationError, "configuration.invalid"),
]


def classify_exception(exc: BaseException) -> SSOError:
    """
    Map any exception to the SSO taxonomy.

    SSOError instances are returned unchanged. httpx timeouts and transport
    failures become IdPConnectionError, HTTP status errors become
    AuthenticationError (4xx) or IdPConnectionError (5xx). Anything else is
    wrapped in a plain SSOError.

    The original exception is attached as __cause__ of the returned error.
    """
    if isinstance(exc, SSOError):
        return exc

    if isinstance(exc, httpx.TimeoutException):
        classified = IdPConnectionError.timeout()
    elif isinstance(exc, httpx.TransportError):
        classified = IdPConnectionError.unreachable()
    elif isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status >= 500:
            classified = IdPConnectionError(
                f"Identity provider returned server error {status}", status
            )
        else:
            classified = AuthenticationError(
                f"Identity provider rejected the request ({status})", status
            )
    else:
        classified = SSOError(str(exc) or exc.__class__.__name__)

    classified.__cause__ = exc
    return classified


def is_retryable(exc: BaseException) -> bool:
    """
    Decide whether a failed attempt may be retried.

    Connection-level failures are retried. Definitive rejections (4xx,
    CSRF, configuration, provisioning) are not.
    """
    if isinstance(exc, SSOError):
        return exc.retryable
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def determine_log_level(exc: BaseException) -> str:
    """Pick a log level from the exception kind and status code."""
    if isinstance(exc, ConfigurationError):
        return "critical"
    if isinstance(exc, IdPConnectionError):
        return "warning"

    status_code = getattr(exc, "status_code", None) or 0
    if status_code >= 500:
        return "error"
    if 400 <= status_code < 500:
        return "warning"
    return "error"


def get_user_message(exc: BaseException, show_details: bool = False) -> str:
    """
    Get a user-facing message for an exception.

    Messages are fixed strings keyed by error kind, so exception text (which
    may contain IdP responses) is never shown unless show_details is set.
    """
    key = None
    for exc_class, message_key in _MESSAGE_KEYS:
        if isinstance(exc, exc_class):
            key = message_key
            break

    if key is None:
        text = str(exc).lower()
        if "timeout" in text or "timed out" in text:
            key = "connection.timeout"
        elif "unreachable" in text or "connection refused" in text:
            key = "connection.unreachable"
        elif "expired" in text:
            key = "token.expired"
        elif "access denied" in text or "forbidden" in text:
            key = "authentication.access_denied"
        else:
            key = "generic.unknown"

    message = USER_MESSAGES[key]

    if show_details:
        message += f"\n\nException: {exc.__class__.__name__}"
        status_code = getattr(exc, "status_code", None)
        if status_code:
            message += f"\nError code: {status_code}"

    return message


def handle_error(
    exc: BaseException,
    context: str,
    logger=None,
    settings: SSOSettings | None = None,
    **data,
) -> None:
    """
    Log an exception once, with redacted context data.

    Args:
        exc: The exception being handled
        context: Short description of what was being attempted
        logger: Optional logger instance
        settings: Optional settings (sensitive keys, stack trace switch)
        **data: Additional context, redacted before logging
    """
    logger = logger or get_logger(__name__)
    sensitive_keys = settings.logging.sensitive_keys if settings else None
    log_stack_traces = settings.error_handling.log_stack_traces if settings else True

    log_method = getattr(logger, determine_log_level(exc))
    log_method(
        f"SSO error: {context}",
        exception=exc.__class__.__name__,
        message=str(exc),
        status_code=getattr(exc, "status_code", None),
        additional_data=redact(data, sensitive_keys) if data else None,
        exc_info=exc if log_stack_traces else None,
    )


def should_fallback_to_local_auth(settings: SSOSettings) -> bool:
    """Whether a failed SSO attempt should offer local authentication."""
    return settings.local_login_available
