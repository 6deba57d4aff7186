"""
Secure Pipeline - Route Integration
Wires the envelope gates and auth dependencies into FastAPI routes.

Per-route order:
    Decrypt -> Authenticate -> Authorize -> Handler -> Encrypt

- Decrypt: SecureRoute replaces the request with a DecryptedRequest whose
  body/query are the plaintext objects (and exposes them as a
  SecureRequestContext).
- Authenticate / Authorize: FastAPI dependencies (TokenVerifier, approval gate)
  resolved by the framework before the handler.
- Encrypt: SecureRoute wraps every JSON response, success or error, in
  {"payload": "<ivHex>:<cipherHex>"}.

Usage:
    pipeline = SecurityPipeline(settings)
    pipeline.install(app)
    router = pipeline.router(prefix="/api/things")

    @router.get("/mine")
    async def mine(claims: Claims = Depends(pipeline.authenticate())): ...
"""

import asyncio
import json
import logging
from typing import Any, Callable, Coroutine, Dict, List, Optional, Tuple, Type
from urllib.parse import urlencode

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.security_settings import SecuritySettings
from services.auth.approval import approved_doctor_dependency
from services.auth.token_auth import TokenVerifier

from .crypto_engine import EnvelopeCipher
from .errors import MSG_ENCRYPT_FAILED, CryptoError, CryptoFormatError, PipelineError, pipeline_error_handler
from .models import Claims, EncryptedPayload, SecureRequestContext

logger = logging.getLogger(__name__)

PAYLOAD_FIELD = "payload"
QUERY_PAYLOAD_METHODS = ("GET", "DELETE", "HEAD")

# Entity headers are recomputed for the replacement body
_DROPPED_RESPONSE_HEADERS = {"content-length", "content-type"}


# ============================================================================
# Decryption Gate
# ============================================================================

class DecryptedRequest(Request):
    """Request view whose body and query string are the decrypted plaintext."""

    def __init__(self, request: Request, context: SecureRequestContext, raw_body: Optional[bytes]):
        scope = dict(request.scope)
        if context.query_encrypted:
            scope["query_string"] = urlencode(_query_items(context.query)).encode("latin-1")
        super().__init__(scope, request.receive)

        if context.body_encrypted:
            raw_body = json.dumps(context.body, ensure_ascii=False).encode("utf-8")
        # Starlette's body(), stream() and json() all read the cached body
        if raw_body is not None:
            self._body = raw_body
        self.secure_context = context


def _query_items(query: Dict[str, Any]) -> List[Tuple[str, str]]:
    """Flatten a decrypted query object into key/value pairs."""
    items = []
    for key, value in query.items():
        values = value if isinstance(value, list) else [value]
        for v in values:
            if v is None:
                continue
            if isinstance(v, str):
                items.append((key, v))
            else:
                items.append((key, json.dumps(v)))
    return items


def _is_json_content(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";")[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


async def decrypt_request(request: Request, cipher: EnvelopeCipher) -> Request:
    """
    Replace encrypted body/query payloads with their plaintext.

    Returns the original request when nothing was encrypted.

    Raises:
        CryptoFormatError / CryptoFailure: Payload present but unusable
    """
    raw_body = None
    body = None
    body_encrypted = False

    if _is_json_content(request.headers.get("content-type")):
        raw_body = await request.body()
        try:
            parsed = json.loads(raw_body) if raw_body else None
        except ValueError:
            # Not ours to reject; the handler's body validation reports it
            parsed = None
        envelope = parsed.get(PAYLOAD_FIELD) if isinstance(parsed, dict) else None
        if isinstance(envelope, str) and envelope:
            body = cipher.decrypt_json(envelope)
            body_encrypted = True

    query = None
    query_encrypted = False
    if request.method in QUERY_PAYLOAD_METHODS and request.query_params.get(PAYLOAD_FIELD):
        query = cipher.decrypt_json(request.query_params[PAYLOAD_FIELD])
        if not isinstance(query, dict):
            raise CryptoFormatError(f"Query payload must be a JSON object, got {type(query).__name__}")
        query_encrypted = True

    if not (body_encrypted or query_encrypted):
        return request

    context = SecureRequestContext(
        body=body,
        query=query,
        body_encrypted=body_encrypted,
        query_encrypted=query_encrypted,
    )
    return DecryptedRequest(request, context, raw_body)


def get_secure_context(request: Request) -> SecureRequestContext:
    """Dependency returning the plaintext recovered for this request."""
    return getattr(request, "secure_context", None) or SecureRequestContext()


# ============================================================================
# Encryption Gate
# ============================================================================

def _is_json_response(response: Response) -> bool:
    # Streaming/file responses have no buffered body; 204/304 have an empty one
    if not getattr(response, "body", None):
        return False
    return _is_json_content(response.headers.get("content-type"))


def encrypt_response(response: Response, cipher: EnvelopeCipher) -> Response:
    """
    Wrap a JSON response body in an envelope.

    Non-JSON responses pass through. If encryption fails the one plaintext
    fallback {"success": false, "error": "Failed to encrypt response"} is sent.
    """
    if not _is_json_response(response):
        return response

    try:
        content = EncryptedPayload(payload=cipher.encrypt(response.body)).model_dump()
    except CryptoError as e:
        logger.error(f"Encryption error: {e}")
        content = {"success": False, "error": MSG_ENCRYPT_FAILED}

    encrypted = JSONResponse(
        content=content,
        status_code=response.status_code,
        background=response.background,
    )
    for key, value in response.headers.items():
        if key.lower() not in _DROPPED_RESPONSE_HEADERS:
            encrypted.headers.append(key, value)
    return encrypted


# ============================================================================
# Exception rendering
# ============================================================================

ExceptionHandler = Callable[[Request, Exception], Any]

# Used when the app has not registered its own handler for these types
_DEFAULT_EXCEPTION_HANDLERS: Dict[Type[Exception], ExceptionHandler] = {
    PipelineError: pipeline_error_handler,
    RequestValidationError: request_validation_exception_handler,
    StarletteHTTPException: http_exception_handler,
}


def lookup_exception_handler(request: Request, exc: Exception) -> Optional[ExceptionHandler]:
    """
    Find the handler the app would use for exc, walking the exception's MRO.

    App-registered handlers win over the defaults at every level of the MRO,
    the same resolution order Starlette's ExceptionMiddleware uses.
    """
    app = request.scope.get("app")
    app_handlers = getattr(app, "exception_handlers", None) or {}
    for exc_class in type(exc).__mro__:
        if exc_class in app_handlers:
            return app_handlers[exc_class]
        if exc_class in _DEFAULT_EXCEPTION_HANDLERS:
            return _DEFAULT_EXCEPTION_HANDLERS[exc_class]
    return None


async def render_exception(handler: ExceptionHandler, request: Request, exc: Exception) -> Response:
    if asyncio.iscoroutinefunction(handler):
        return await handler(request, exc)
    return await run_in_threadpool(handler, request, exc)


# ============================================================================
# Route class
# ============================================================================

class SecureRoute(APIRoute):
    """
    APIRoute running the envelope gates around the framework handler.

    Bind a cipher with secure_route_class(); the bare class has none and
    refuses to build handlers.
    """
    envelope_cipher: Optional[EnvelopeCipher] = None
    decrypt_requests: bool = True
    encrypt_responses: bool = True

    def get_route_handler(self) -> Callable[[Request], Coroutine[Any, Any, Response]]:
        original_route_handler = super().get_route_handler()
        cipher = self.envelope_cipher
        if cipher is None:
            raise RuntimeError("SecureRoute has no envelope cipher; use secure_route_class()")

        async def secure_route_handler(request: Request) -> Response:
            try:
                if self.decrypt_requests:
                    request = await decrypt_request(request, cipher)
                response = await original_route_handler(request)
            except Exception as e:
                if isinstance(e, CryptoError):
                    logger.error(f"Decryption error on {request.method} {request.url.path}: {e}")
                handler = lookup_exception_handler(request, e)
                if handler is None:
                    raise
                response = await render_exception(handler, request, e)

            if self.encrypt_responses:
                response = encrypt_response(response, cipher)
            return response

        return secure_route_handler


def secure_route_class(
    cipher: EnvelopeCipher,
    decrypt_requests: bool = True,
    encrypt_responses: bool = True
) -> Type[SecureRoute]:
    """Create a SecureRoute subclass bound to one cipher."""
    return type(
        "BoundSecureRoute",
        (SecureRoute,),
        {
            "envelope_cipher": cipher,
            "decrypt_requests": decrypt_requests,
            "encrypt_responses": encrypt_responses,
        },
    )


# ============================================================================
# Pipeline
# ============================================================================

class SecurityPipeline:
    """Holds the startup-validated settings and builds pipeline stages from them."""

    def __init__(self, settings: SecuritySettings):
        self.settings = settings
        self.cipher = EnvelopeCipher.from_settings(settings)
        self.route_class = secure_route_class(self.cipher)
        self._verifiers: Dict[Optional[str], TokenVerifier] = {}

    def authenticate(self, required_role: Optional[str] = None) -> TokenVerifier:
        """Token Verifier dependency, optionally enforcing a role."""
        if required_role not in self._verifiers:
            self._verifiers[required_role] = TokenVerifier(self.settings, required_role)
        return self._verifiers[required_role]

    def approved_doctor(self) -> Callable[..., Claims]:
        """Token Verifier followed by the doctor approval gate."""
        return approved_doctor_dependency(self.authenticate())

    def router(self, **kwargs: Any) -> APIRouter:
        """APIRouter whose routes run the full envelope pipeline."""
        return APIRouter(route_class=self.route_class, **kwargs)

    def install(self, app: FastAPI) -> None:
        """Render pipeline errors raised on routes outside a secure router."""
        app.add_exception_handler(PipelineError, pipeline_error_handler)
        app.state.security_pipeline = self
