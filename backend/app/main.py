# app/main.py
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.core.db import init_db, close_db
from app.core.accounts import AccountDirectory
from app.core.bootstrap import ensure_default_admin
from app.core.chat import ChatCoordinator
from app.core.chat_store import ChatStore
from app.core.errors import ServiceError, service_error_handler
from app.core.notify import send_otp_email
from app.core.recovery import RecoveryService

from app.api.v1.routers import auth, chat
from app.api.v1.routers.ws_chat import router as ws_chat_router

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=settings.APP_NAME)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(ServiceError, service_error_handler)

# Process-wide services, reached by routes through app.state (see api/v1/deps.py)
directory = AccountDirectory()
app.state.directory = directory
app.state.recovery = RecoveryService(directory, send_otp_email)
app.state.chat = ChatCoordinator(ChatStore(), directory)

@app.on_event("startup")
async def on_startup():
    await init_db()
    # Ensure there's a default admin account on first run
    await ensure_default_admin()
    app.state.recovery.start_sweeper()
    logger.info("[startup] %s ready (env=%s)", settings.APP_NAME, settings.env)

@app.on_event("shutdown")
async def on_shutdown():
    await app.state.recovery.stop_sweeper()
    await close_db()

# REST
app.include_router(auth.router, prefix="/api/v1")
app.include_router(chat.router, prefix="/api/v1")

# WebSocket
app.include_router(ws_chat_router)

@app.get("/healthz")
def healthz():
    return {"ok": True}
