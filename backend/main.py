import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from core.config import CORS_ORIGINS, UPLOAD_DIR
from core.database import create_db_and_tables
from core.logging import init_logging
from routes import admin, auth, complaints, notifications, technicians, ws
from services.realtime import ConnectionRegistry

init_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("Database ready")
    yield
    logger.info("Shutting down with %d users and %d admins connected",
                app.state.connections.user_count(), app.state.connections.admin_count())


app = FastAPI(title="Water Complaints API", lifespan=lifespan)
# live websocket handles; rebuilt empty on every start
app.state.connections = ConnectionRegistry()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Make sure the folder exists
os.makedirs(UPLOAD_DIR, exist_ok=True)

# Expose uploads directory at /uploads
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")
app.include_router(auth.router, prefix="/auth")
app.include_router(complaints.router, prefix="/complaints")
app.include_router(technicians.router, prefix="/technicians")
app.include_router(admin.router, prefix="/admins")
app.include_router(admin.audit_router, prefix="/audit-logs")
app.include_router(notifications.router, prefix="/notifications")
app.include_router(ws.router)


@app.get("/", tags=["Health"])
def root():
    return {"message": "Water Complaints API running"}
