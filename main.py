#!/usr/bin/env python3
"""
Secure Request Pipeline - Backend API
Version: v1.0.0

Bearer JWT authentication, doctor approval gate and AES-256-CBC payload
envelopes wrapped around request/response bodies.

Run:
    uvicorn main:create_app --factory --port 3000
    python main.py
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

# ============================================================================
# Serverless environment detection
# ============================================================================
IS_VERCEL = os.environ.get("VERCEL") == "1"
PROJECT_ROOT = Path(__file__).parent

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
import uvicorn

from config.security_settings import SecuritySettings
from routes import build_session_router
from services.security.pipeline import SecurityPipeline

VERSION = "1.0.0"


# ============================================================================
# Logging
# ============================================================================

def setup_logging():
    """Configure root logging (stdout plus a log file where writable)."""
    handlers = [logging.StreamHandler(sys.stdout)]

    # Only add file handler for non-serverless environments
    if not IS_VERCEL:
        try:
            handlers.append(logging.FileHandler('secure_pipeline.log', encoding='utf-8'))
        except OSError:
            pass  # Skip file logging if not writable

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
    return logging.getLogger(__name__)

logger = setup_logging()


# ============================================================================
# FastAPI application
# ============================================================================

def create_app(settings: Optional[SecuritySettings] = None) -> FastAPI:
    """
    Build the API.

    Settings are loaded from the environment when not given. An invalid
    configuration raises ConfigInvalid here, before any traffic is served.
    """
    if settings is None:
        settings = SecuritySettings.from_env()

    pipeline = SecurityPipeline(settings)
    logger.info(
        f"Secure pipeline ready: AES-256-CBC, iv_length={settings.iv_length}, "
        f"jwt={settings.jwt_algorithm}, token_ttl={settings.jwt_expiration_hours}h"
    )

    app = FastAPI(
        title="Secure Request Pipeline API",
        version=VERSION,
        description="Token authentication, approval gate and encrypted payload envelopes"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS", "PUT", "PATCH", "DELETE"],
        allow_headers=["X-Requested-With", "Content-Type", "Authorization"],
    )

    pipeline.install(app)
    app.include_router(build_session_router(pipeline))

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return "Server running"

    @app.get("/api/health")
    async def health_check() -> Dict[str, Any]:
        """Health check (plaintext, outside the secure pipeline)."""
        return {
            "status": "healthy",
            "version": VERSION,
            "timestamp": datetime.now().isoformat(),
            "demo_mode": IS_VERCEL
        }

    return app


# ============================================================================
# Startup
# ============================================================================

if __name__ == "__main__":
    port = int(os.getenv("PORT", "3000"))

    print("=" * 70)
    print(f"Secure Request Pipeline API v{VERSION}")
    print("=" * 70)
    print(f"Listening: http://0.0.0.0:{port}")
    print(f"API docs:  http://localhost:{port}/docs")
    print(f"Health:    http://localhost:{port}/api/health")
    print("=" * 70)

    uvicorn.run(
        "main:create_app",
        factory=True,
        host="0.0.0.0",
        port=port,
        log_level="info",
        access_log=True
    )
