from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ModuleChangeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Missing codes are reported by the entitlement pipeline, not by validation.
    module_code: str | None = Field(default=None, alias="moduleCode")


class ModuleRemoveResponse(BaseModel):
    success: bool = True
    message: str
    access_until: datetime
    immediate: bool
    billing_marked: bool | None = None


class ModuleAddResponse(BaseModel):
    success: bool = True
    message: str
    subscription_item_id: str | None = None
    reactivated: bool = False


class AccountModuleStatus(BaseModel):
    code: str
    name: str
    description: str | None = None
    is_core: bool
    enabled: bool
    enabled_at: datetime | None = None
    disabled_at: datetime | None = None
    pending_deletion: bool = False


class ModuleListResponse(BaseModel):
    modules: list[AccountModuleStatus]
    is_paid: bool
    is_legacy_pricing: bool


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
