import logging
import time

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from .config import ALLOWED_ORIGINS, MAX_BODY_BYTES, load_settings
from .schemas import ErrorResponse, ExplainRequest, ExplainResponse
from .services.cache import ExplanationCache, derive_cache_key
from .services.llm import OpenAIExplainer

logger = logging.getLogger(__name__)

MISSING_SQL_ERROR = "Missing 'sql' in request body."
UPSTREAM_ERROR = "Failed to explain SQL."

# ============================================================
# MIDDLEWARE
# ============================================================


class BodySizeLimitMiddleware:
    """
    Rejects request bodies over max_bytes with 413 before they are parsed.

    A declared Content-Length is checked up front. Chunked bodies have no
    length, so they are buffered up to the limit and replayed to the app.
    """
    def __init__(self, app: ASGIApp, max_bytes: int = MAX_BODY_BYTES):
        self.app = app
        self.max_bytes = max_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        length = Headers(scope=scope).get("content-length")
        if length is not None:
            try:
                declared = int(length)
            except ValueError:
                response = JSONResponse(status_code=400, content={"error": "Invalid Content-Length header."})
                await response(scope, receive, send)
                return
            if declared > self.max_bytes:
                await self._reject(scope, receive, send, declared)
                return
            await self.app(scope, receive, send)
            return

        messages = []
        received = 0
        more_body = True
        while more_body:
            message = await receive()
            messages.append(message)
            if message["type"] != "http.request":
                break
            received += len(message.get("body", b""))
            if received > self.max_bytes:
                await self._reject(scope, receive, send, received)
                return
            more_body = message.get("more_body", False)

        async def replay_receive():
            if messages:
                return messages.pop(0)
            return await receive()

        await self.app(scope, replay_receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int):
        logger.warning("Rejected %s %s: body of at least %d bytes", scope["method"], scope["path"], size)
        response = JSONResponse(status_code=413, content={"error": "Request body too large."})
        await response(scope, receive, send)


# ============================================================
# FASTAPI APP INITIALIZATION
# ============================================================

app = FastAPI(title="SQL Dojo Explain API")

# CORS: allows the browser front-end to call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,         # must be False when allow_origins="*"
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=MAX_BODY_BYTES)


@app.on_event("startup")
def startup_event():
    """
    Builds the process-wide cache and LLM client.
    load_settings() raises SystemExit if OPENAI_API_KEY is missing,
    which aborts startup before any request is served.
    """
    settings = load_settings()

    app.state.settings = settings
    app.state.explanation_cache = ExplanationCache(max_entries=settings.CACHE_MAX_ENTRIES)
    app.state.explainer = OpenAIExplainer.from_settings(settings)

    logger.info(
        "Explain backend ready: model=%s cache_max_entries=%d",
        settings.OPENAI_MODEL,
        settings.CACHE_MAX_ENTRIES,
    )


@app.on_event("shutdown")
def shutdown_event():
    explainer = getattr(app.state, "explainer", None)
    if explainer is not None:
        explainer.session.close()

    cache = getattr(app.state, "explanation_cache", None)
    if cache is not None:
        logger.info("Dropping explanation cache with %d entries", cache.size())
        cache.clear()


# ============================================================
# DEPENDENCIES
# ============================================================

def get_cache(request: Request) -> ExplanationCache:
    return request.app.state.explanation_cache


def get_explainer(request: Request) -> OpenAIExplainer:
    return request.app.state.explainer


# ============================================================
# ERROR HANDLERS
# ============================================================

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Turns pydantic validation errors into a single {"error": ...} message.
    Anything wrong with (or without) sql reports the missing-sql error.
    """
    errors = exc.errors()

    if any(e.get("type") == "json_invalid" for e in errors):
        return JSONResponse(status_code=400, content={"error": "Request body must be valid JSON."})

    fields = []
    for e in errors:
        loc = e.get("loc", ())
        if len(loc) > 1 and loc[0] == "body" and isinstance(loc[1], str):
            fields.append(loc[1])

    if not fields or "sql" in fields:
        message = MISSING_SQL_ERROR
    else:
        message = f"Invalid '{fields[0]}' in request body."

    return JSONResponse(status_code=400, content={"error": message})


# ============================================================
# ENDPOINTS
# ============================================================

@app.get("/")
def root():
    return {"ok": True, "message": "SQL Dojo explain backend is running."}


@app.get("/health")
def health():
    """
    Very fast health check.
    """
    return {"status": "ok", "message": "Server is running"}


@app.get("/cache/stats")
def cache_stats(cache: ExplanationCache = Depends(get_cache)):
    """
    Debug endpoint to inspect the explanation cache.
    """
    return cache.stats()


ERROR_RESPONSES = {400: {"model": ErrorResponse}, 413: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


@app.post("/explain", response_model=ExplainResponse, response_model_exclude_none=True, responses=ERROR_RESPONSES)
@app.post("/api/explain-sql", response_model=ExplainResponse, response_model_exclude_none=True, responses=ERROR_RESPONSES)
async def explain_sql(
    req: ExplainRequest,
    cache: ExplanationCache = Depends(get_cache),
    explainer: OpenAIExplainer = Depends(get_explainer),
):
    """
    Main endpoint:
    1) Validate sql
    2) Derive cache key (sql, challengeId, title, gradeStatus)
    3) Cache hit -> return with cached=True
    4) Cache miss -> ask the LLM, store, return
    """
    # ----------------------------
    # Step 0: Validate input
    # ----------------------------
    if not req.sql:
        raise HTTPException(status_code=400, detail=MISSING_SQL_ERROR)

    # ----------------------------
    # Step 1: Cache check
    # ----------------------------
    cache_key = derive_cache_key(req.sql, req.challenge_id, req.title, req.grade_status)
    cached = cache.get(cache_key)

    if cached is not None:
        logger.info("Cache HIT for key %s", cache_key[:12])
        return {"explanation": cached, "cached": True}

    logger.info("Cache MISS for key %s", cache_key[:12])

    # ----------------------------
    # Step 2: LLM generation
    # ----------------------------
    # Runs in the threadpool; other requests keep being served while we wait.
    # Two identical requests in flight may both miss and both call upstream.
    t0 = time.time()
    try:
        explanation = await run_in_threadpool(
            explainer.explain,
            req.sql,
            challenge_id=req.challenge_id,
            title=req.title,
            description=req.description,
            grade_status=req.grade_status,
        )
    except Exception:
        logger.exception("Explain SQL error (key %s)", cache_key[:12])
        return JSONResponse(status_code=500, content={"error": UPSTREAM_ERROR})

    logger.info("LLM completed in %.2fs: length=%d", time.time() - t0, len(explanation))

    # ----------------------------
    # Step 3: Cache + respond
    # ----------------------------
    cache.put(cache_key, explanation)

    return {"explanation": explanation}


def run():
    """
    Entry point: `sql-explain` or `python -m sql_explain.main`.
    """
    logging.basicConfig(level=logging.INFO)
    settings = load_settings()
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
