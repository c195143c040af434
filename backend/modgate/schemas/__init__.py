from modgate.schemas.billing import ReconciliationQueued, ReconciliationRequest, WebhookAck
from modgate.schemas.module import (
    AccountModuleStatus,
    ErrorResponse,
    ModuleAddResponse,
    ModuleChangeRequest,
    ModuleListResponse,
    ModuleRemoveResponse,
)

__all__ = [
    "AccountModuleStatus",
    "ErrorResponse",
    "ModuleAddResponse",
    "ModuleChangeRequest",
    "ModuleListResponse",
    "ModuleRemoveResponse",
    "ReconciliationQueued",
    "ReconciliationRequest",
    "WebhookAck",
]
