import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from leadflow.core.settings import settings, validate_settings
from leadflow.db.session import engine
from leadflow.models import Base
from leadflow.routers.alerts import router as alerts_router
from leadflow.routers.leads import router as leads_router
from leadflow.routers.uploads import router as uploads_router
from leadflow.routers.webhooks import router as webhooks_router

app = FastAPI(title="Leadflow API", version="0.1.0")
logger = logging.getLogger("leadflow.startup")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)
    logger.info("Leadflow API started (%s).", settings.app_env)


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(leads_router)
app.include_router(alerts_router)
app.include_router(uploads_router)
app.include_router(webhooks_router)
