"""Tagged results for entitlement operations.

Business-rule failures are returned as ``Err(kind)`` values instead of being
raised, so every validation pipeline reads as plain data flow:

    result = manager.request_deactivation("nps", identity)
    if isinstance(result, Err):
        return error_response(result)

Each ``ErrorKind`` maps to one category of the error taxonomy, an HTTP status
and a default user-facing message. Failures of external services are not
modelled here; they raise ``BillingGatewayError``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorCategory(str, Enum):
    VALIDATION = "validation_error"
    AUTHENTICATION = "authentication_error"
    AUTHORIZATION = "authorization_error"
    NOT_FOUND = "not_found_error"
    CONFLICT = "conflict_error"


class ErrorKind(str, Enum):
    MODULE_CODE_REQUIRED = "module_code_required"
    UNKNOWN_MODULE = "unknown_module"
    MODULE_PRICING_NOT_CONFIGURED = "module_pricing_not_configured"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    USER_NOT_FOUND = "user_not_found"
    ACCOUNT_NOT_FOUND = "account_not_found"
    MODULE_NOT_ENABLED = "module_not_enabled"
    CORE_MODULE_PROTECTED = "core_module_protected"
    LEGACY_ACCOUNT_IMMUTABLE = "legacy_account_immutable"
    ALREADY_DISABLED = "already_disabled"
    ALREADY_ENABLED = "already_enabled"
    NO_ACTIVE_SUBSCRIPTION = "no_active_subscription"
    SUBSCRIPTION_INACTIVE = "subscription_inactive"
    CONCURRENT_MODIFICATION = "concurrent_modification"

    @property
    def category(self) -> ErrorCategory:
        return _ERROR_DETAILS[self][0]

    @property
    def status_code(self) -> int:
        return _ERROR_DETAILS[self][1]

    @property
    def default_message(self) -> str:
        return _ERROR_DETAILS[self][2]


_ERROR_DETAILS: dict[ErrorKind, tuple[ErrorCategory, int, str]] = {
    ErrorKind.MODULE_CODE_REQUIRED: (
        ErrorCategory.VALIDATION, 400, "Module code is required"
    ),
    ErrorKind.UNKNOWN_MODULE: (ErrorCategory.VALIDATION, 400, "Invalid module code"),
    ErrorKind.MODULE_PRICING_NOT_CONFIGURED: (
        ErrorCategory.VALIDATION, 400, "Module pricing not configured"
    ),
    ErrorKind.UNAUTHENTICATED: (ErrorCategory.AUTHENTICATION, 401, "Unauthorized"),
    ErrorKind.FORBIDDEN: (
        ErrorCategory.AUTHORIZATION, 403, "Only account owners can manage modules"
    ),
    ErrorKind.USER_NOT_FOUND: (ErrorCategory.NOT_FOUND, 404, "User not found"),
    ErrorKind.ACCOUNT_NOT_FOUND: (ErrorCategory.NOT_FOUND, 404, "Account not found"),
    ErrorKind.MODULE_NOT_ENABLED: (ErrorCategory.NOT_FOUND, 400, "Module is not enabled"),
    ErrorKind.CORE_MODULE_PROTECTED: (
        ErrorCategory.CONFLICT, 400, "Cannot remove the core module"
    ),
    ErrorKind.LEGACY_ACCOUNT_IMMUTABLE: (
        ErrorCategory.CONFLICT, 400, "Legacy accounts cannot modify modules"
    ),
    ErrorKind.ALREADY_DISABLED: (
        ErrorCategory.CONFLICT, 400, "Module is already disabled"
    ),
    ErrorKind.ALREADY_ENABLED: (ErrorCategory.CONFLICT, 400, "Module is already enabled"),
    ErrorKind.NO_ACTIVE_SUBSCRIPTION: (
        ErrorCategory.CONFLICT, 400, "No active subscription found"
    ),
    ErrorKind.SUBSCRIPTION_INACTIVE: (
        ErrorCategory.CONFLICT, 400, "Subscription is not active"
    ),
    ErrorKind.CONCURRENT_MODIFICATION: (
        ErrorCategory.CONFLICT, 409, "Module was modified concurrently, please retry"
    ),
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str | None = None

    @property
    def detail(self) -> str:
        return self.message or self.kind.default_message

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_body(self) -> dict[str, str]:
        return {"error": self.detail, "code": self.kind.value}


Result = Union[Ok[T], Err]
