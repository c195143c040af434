from modgate.models.account import Account
from modgate.models.account_module import AccountModule, EntitlementState
from modgate.models.audit_log import AuditLog
from modgate.models.module import Module
from modgate.models.user import User, UserRole
from modgate.models.webhook_event import WebhookEvent

__all__ = [
    "Account",
    "AccountModule",
    "AuditLog",
    "EntitlementState",
    "Module",
    "User",
    "UserRole",
    "WebhookEvent",
]
