"""
Enquiry CRM - API Backend

Start with:
    uvicorn enquiry_crm.server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from enquiry_crm import __version__
from enquiry_crm.config import (
    CORS_ORIGINS,
    DEFAULT_ADMIN_EMAIL,
    DEFAULT_ADMIN_PASSWORD,
    DEFAULT_ADMIN_USERNAME,
    SCHEDULER_ENABLED,
    client,
    db,
)
from enquiry_crm.routes import auth, enquiries, payments, advertisements, stats
from enquiry_crm.routes.deps import get_identity_service
from enquiry_crm.services.record_store import StoreError

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("enquiry_crm")

app = FastAPI(
    title="Enquiry CRM",
    description="Enquiries, follow-ups, payments and advertisement leads",
    version=__version__
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== ROUTES ====================

app.include_router(auth.router, prefix="/api")
app.include_router(enquiries.router, prefix="/api")
app.include_router(payments.router, prefix="/api")
app.include_router(advertisements.router, prefix="/api")
app.include_router(stats.router, prefix="/api")


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"[STORE] {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unavailable, nothing was changed by the failed step"})


@app.get("/")
async def root():
    return {
        "name": "Enquiry CRM API",
        "version": __version__,
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info(f"Enquiry CRM v{__version__} starting")

    await db.users.create_index("id", unique=True)
    await db.users.create_index("email")
    await db.users.create_index("username")
    await db.identities.create_index("uid", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expiresAt")
    await db.enquiries.create_index("id", unique=True)
    await db.enquiries.create_index("mobile")
    await db.enquiries.create_index("email")
    await db.enquiries.create_index("aadharNumber")
    await db.enquiries.create_index("callBackDate")
    await db.payments.create_index("id", unique=True)
    await db.payments.create_index("enquiryId")
    await db.payments.create_index("paymentEntryId")
    await db.advertisements.create_index("id", unique=True)
    await db.advertisements.create_index("phoneNo")
    await db.activity_logs.create_index("createdAt")
    logger.info("MongoDB indexes created")

    await get_identity_service().initialize_default_admin(
        DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_USERNAME, DEFAULT_ADMIN_PASSWORD
    )

    if SCHEDULER_ENABLED:
        from enquiry_crm.scheduler_service import task_scheduler
        task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    if SCHEDULER_ENABLED:
        from enquiry_crm.scheduler_service import task_scheduler
        task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
