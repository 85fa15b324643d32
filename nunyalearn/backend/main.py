# nunyalearn/backend/main.py
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import text

from nunyalearn.backend.core.config import get_settings
from nunyalearn.backend.core.errors import register_exception_handlers
from nunyalearn.backend.core.logging_config import setup_logging
from nunyalearn.db.session import get_engine

# 모델 모듈 임포트(테이블 등록 보장용)
import nunyalearn.db.base  # noqa: F401

# 라우터
from nunyalearn.backend.routers import auth

settings = get_settings()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Nunyalearn API",
    version=settings.app_version,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# 라우터 등록
app.include_router(auth.auth_router)


@app.get("/health")
def health_app():
    return {"ok": True}


@app.get("/health/db")
def health_db():
    # Migration is a deployment concern. Runtime only verifies DB connectivity.
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"ok": True}
    except Exception:
        logger.exception("database health check failed")
        raise HTTPException(status_code=500, detail="Database connection failed")
