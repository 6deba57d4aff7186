"""
Secure Session Routes
Routes: /api/session/*

Pipeline probe endpoints. Every route here runs the full secure pipeline:
decrypted input, bearer authentication, encrypted output.

Endpoints:
- GET  /api/session/me      - Claims of the caller
- GET  /api/session/admin   - Admin-only check
- GET  /api/session/doctor  - Approved doctors only
- POST /api/session/echo    - Echo the decrypted body
- GET  /api/session/echo    - Echo the decrypted query
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request

from services.security.models import Claims, SecureRequestContext
from services.security.pipeline import SecurityPipeline, get_secure_context

logger = logging.getLogger(__name__)


def build_session_router(pipeline: SecurityPipeline) -> APIRouter:
    """Create the /api/session router bound to a pipeline."""
    router = pipeline.router(prefix="/api/session", tags=["Secure Session"])
    authenticate = pipeline.authenticate()

    @router.get("/me")
    async def whoami(claims: Claims = Depends(authenticate)) -> Dict[str, Any]:
        """Return the decoded claims for the current credential."""
        return {"success": True, "user": claims.as_payload()}

    @router.get("/admin")
    async def admin_check(claims: Claims = Depends(pipeline.authenticate("admin"))) -> Dict[str, Any]:
        return {"success": True, "role": claims.role}

    @router.get("/doctor")
    async def doctor_check(claims: Claims = Depends(pipeline.approved_doctor())) -> Dict[str, Any]:
        """Reachable only by doctors whose account has been approved."""
        return {"success": True, "doctor_id": claims.id}

    @router.post("/echo")
    async def echo_body(
        body: Any = Body(None),
        claims: Claims = Depends(authenticate),
        context: SecureRequestContext = Depends(get_secure_context),
    ) -> Dict[str, Any]:
        logger.info(f"Echo body for user {claims.id} (encrypted={context.body_encrypted})")
        return {"success": True, "body": body, "encrypted": context.body_encrypted}

    @router.get("/echo")
    async def echo_query(
        request: Request,
        claims: Claims = Depends(authenticate),
        context: SecureRequestContext = Depends(get_secure_context),
    ) -> Dict[str, Any]:
        query = context.query if context.query_encrypted else dict(request.query_params)
        return {"success": True, "query": query, "encrypted": context.query_encrypted}

    return router
