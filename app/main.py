import logging
import os
from typing import Callable, Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.audit_middleware import AuditMiddleware
from app.core.errors import AchievementError, achievement_error_handler
from app.core.logging import setup_logging
from app.services.document_store import DocumentStore
from app.routers import ping, auth, me, achievement, verification, notifications

logger = logging.getLogger(__name__)

def custom_generate_unique_id(route):
    return f"{route.tags[0]}_{route.name}" if route.tags else route.name

def create_app(
    session_factory: Optional[Callable[[], Session]] = None,
    document_store: Optional[DocumentStore] = None,
) -> FastAPI:
    if session_factory is None:
        from app.db.session import SessionLocal
        session_factory = SessionLocal
    if document_store is None:
        from app.db.mongo import create_mongo_client, get_achievements_collection
        from app.services.document_store import MongoDocumentStore
        document_store = MongoDocumentStore(get_achievements_collection(create_mongo_client()))

    app = FastAPI(title="Student Achievements",
        version="1.0.0",
        generate_unique_id_function=custom_generate_unique_id,)

    app.state.session_factory = session_factory
    app.state.document_store = document_store

    app.add_exception_handler(AchievementError, achievement_error_handler)

    os.makedirs(settings.MEDIA_ROOT, exist_ok=True)
    app.mount(settings.MEDIA_URL, StaticFiles(directory=settings.MEDIA_ROOT), name="media")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(AuditMiddleware)

    app.include_router(ping.router)
    app.include_router(auth.router)
    app.include_router(me.router)
    app.include_router(achievement.router)
    app.include_router(verification.router)
    app.include_router(notifications.router)

    logger.info("Application configured (media root %s)", settings.MEDIA_ROOT)
    return app

setup_logging()
app = create_app()
