from modgate.repositories.account_module_repository import AccountModuleRepository
from modgate.repositories.account_repository import AccountRepository
from modgate.repositories.audit_log_repository import AuditLogRepository
from modgate.repositories.module_repository import ModuleRepository
from modgate.repositories.user_repository import UserRepository
from modgate.repositories.webhook_event_repository import WebhookEventRepository

__all__ = [
    "AccountModuleRepository",
    "AccountRepository",
    "AuditLogRepository",
    "ModuleRepository",
    "UserRepository",
    "WebhookEventRepository",
]
