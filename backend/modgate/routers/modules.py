from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from modgate.core.auth import ActingUser, get_identity
from modgate.core.config import settings
from modgate.core.database import get_db
from modgate.core.result import Err, ErrorKind, Result
from modgate.models.shared import as_utc, utc_now
from modgate.repositories.account_module_repository import AccountModuleRepository
from modgate.repositories.account_repository import AccountRepository
from modgate.repositories.module_repository import ModuleRepository
from modgate.schemas.module import (
    AccountModuleStatus,
    ErrorResponse,
    ModuleAddResponse,
    ModuleChangeRequest,
    ModuleListResponse,
    ModuleRemoveResponse,
)
from modgate.services.billing_gateway import BillingGateway, get_billing_gateway
from modgate.services.entitlement_manager import EntitlementManager

router = APIRouter()

ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Request rejected by a module rule"},
    401: {"model": ErrorResponse, "description": "Missing or invalid bearer token"},
    403: {"model": ErrorResponse, "description": "Caller is not the account owner"},
    404: {"model": ErrorResponse, "description": "User or account not found"},
    409: {"model": ErrorResponse, "description": "Concurrent modification, retry"},
    500: {"model": ErrorResponse, "description": "Billing provider failure"},
}


def error_response(err: Err) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content=err.to_body())


def get_entitlement_manager(
    db: Session = Depends(get_db),
    billing_gateway: BillingGateway = Depends(get_billing_gateway),
) -> EntitlementManager:
    return EntitlementManager(db, billing_gateway)


@router.post(
    "/remove",
    response_model=ModuleRemoveResponse,
    summary="Remove a module",
    responses=ERROR_RESPONSES,
)
async def remove_module(
    data: ModuleChangeRequest | None = Body(default=None),
    identity: Result[ActingUser] = Depends(get_identity),
    manager: EntitlementManager = Depends(get_entitlement_manager),
) -> ModuleRemoveResponse | JSONResponse:
    """Disable a module now, or at the end of the already-paid billing period."""
    result = manager.request_deactivation(data.module_code if data else None, identity)
    if isinstance(result, Err):
        return error_response(result)
    outcome = result.value
    return ModuleRemoveResponse(
        message=outcome.message,
        access_until=outcome.access_until,
        immediate=outcome.immediate,
        billing_marked=outcome.billing_marked,
    )


@router.post(
    "/add",
    response_model=ModuleAddResponse,
    summary="Add a module",
    responses=ERROR_RESPONSES,
)
async def add_module(
    data: ModuleChangeRequest | None = Body(default=None),
    identity: Result[ActingUser] = Depends(get_identity),
    manager: EntitlementManager = Depends(get_entitlement_manager),
) -> ModuleAddResponse | JSONResponse:
    """Enable a module, or cancel its pending removal."""
    result = manager.request_activation(data.module_code if data else None, identity)
    if isinstance(result, Err):
        return error_response(result)
    outcome = result.value
    return ModuleAddResponse(
        message=outcome.message,
        subscription_item_id=outcome.billing_item_id,
        reactivated=outcome.reactivated,
    )


@router.get(
    "/list",
    response_model=ModuleListResponse,
    summary="List modules for the caller's account",
    responses={k: v for k, v in ERROR_RESPONSES.items() if k in (401, 404)},
)
async def list_modules(
    identity: Result[ActingUser] = Depends(get_identity),
    db: Session = Depends(get_db),
) -> ModuleListResponse | JSONResponse:
    """Module catalog with the caller's account entitlement status per module."""
    if isinstance(identity, Err):
        return error_response(identity)
    user = identity.value
    account = AccountRepository(db).get_by_id(user.account_id) if user.account_id else None
    if account is None:
        return error_response(Err(ErrorKind.ACCOUNT_NOT_FOUND))

    now = utc_now()
    entitlements = {
        str(row.module_code): row
        for row in AccountModuleRepository(db).get_by_account(UUID(str(account.id)))
    }
    modules = []
    for module in ModuleRepository(db).get_all():
        code = str(module.code)
        row = entitlements.get(code)
        is_core = code == settings.CORE_MODULE_CODE
        modules.append(
            AccountModuleStatus(
                code=code,
                name=str(module.name),
                description=module.description,  # type: ignore[arg-type]
                is_core=is_core,
                enabled=bool(account.is_legacy_pricing)
                or is_core
                or (row is not None and row.is_active(now)),
                enabled_at=as_utc(row.enabled_at) if row else None,  # type: ignore[arg-type]
                disabled_at=as_utc(row.disabled_at) if row else None,  # type: ignore[arg-type]
                pending_deletion=bool(row.pending_deletion) if row else False,
            )
        )
    return ModuleListResponse(
        modules=modules,
        is_paid=bool(account.is_paid),
        is_legacy_pricing=bool(account.is_legacy_pricing),
    )
