from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

import socketio

import schemas
from config import CLEANUP_ENABLED, CORS_ORIGINS, ENVIRONMENT, LOG_LEVEL
from database import init_db
from auth.routes import router as auth_router
from routers.projects import router as projects_router
from routers.tasks import router as tasks_router
from routers.notes import router as notes_router
from routers.notifications import router as notifications_router
from routers.users import router as users_router
from realtime.server import sio
from services.cleanup import start_cleanup_scheduler, stop_cleanup_scheduler

# Configure logging
logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="ProjectHub API",
    description="Collaborative project management: Kanban boards, notes, notifications and live updates",
    version="1.0.0",
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(projects_router)
app.include_router(tasks_router)
app.include_router(notes_router)
app.include_router(notifications_router)
app.include_router(users_router)


@app.on_event("startup")
async def on_startup():
    logger.info(f"Starting ProjectHub API ({ENVIRONMENT})")
    init_db()
    if CLEANUP_ENABLED:
        start_cleanup_scheduler()
    else:
        logger.info("Cleanup scheduler disabled (CLEANUP_ENABLED=false)")


@app.on_event("shutdown")
async def on_shutdown():
    await stop_cleanup_scheduler()


@app.get("/api/health", response_model=schemas.HealthResponse)
def health_check():
    return {"status": "healthy"}


# Entry point for uvicorn: Socket.IO on /socket.io, everything else to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:asgi_app", host="0.0.0.0", port=5000, reload=ENVIRONMENT == "development")
