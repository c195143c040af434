import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modgate.core.config import settings
from modgate.routers import billing, billing_webhooks, modules
from modgate.services.billing_gateway import BillingGatewayError

logger = logging.getLogger(__name__)

OPENAPI_TAGS = [
    {"name": "Modules", "description": "Enable, disable and list optional account modules."},
    {"name": "Webhooks", "description": "Receive billing provider events."},
    {"name": "Billing", "description": "Operational billing reconciliation triggers."},
]

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.version,
    description=(
        "Module entitlement service. Grants and revokes access to separately "
        "billed modules and keeps subscription line items in step."
    ),
    openapi_tags=OPENAPI_TAGS,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingGatewayError)
async def billing_gateway_error_handler(request: Request, exc: BillingGatewayError) -> JSONResponse:
    logger.error("Billing provider error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Billing provider request failed"})


app.include_router(modules.router, prefix="/modules", tags=["Modules"])
app.include_router(billing_webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "app": settings.APP_NAME,
        "version": settings.version,
        "domain": settings.APP_DOMAIN,
        "status": "running",
    }
