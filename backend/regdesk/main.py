# /regdesk/main.py

import os
import time
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from regdesk.config.settings import settings
from regdesk.errors import UnknownSessionError, generic_error_handler, unknown_session_handler
from regdesk.utils.lifecycle import lifespan
from regdesk.utils.metrics import response_time_histogram
from regdesk.utils.rate_limiter import limiter
from regdesk.routes import public, sessions, webhooks

app = FastAPI(
    title="Registration Desk WhatsApp Intake",
    version="1.0.0",
    description="WhatsApp intake for company, church, college, PRAZ and other registration applications",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
    redoc_url=None,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Error Handling ---
app.add_exception_handler(UnknownSessionError, unknown_session_handler)
app.add_exception_handler(Exception, generic_error_handler)

# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SlowAPIMiddleware)

@app.middleware("http")
async def performance_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    # route template, so sender ids do not become label values
    endpoint = getattr(request.scope.get("route"), "path", request.url.path)
    response_time_histogram.labels(endpoint=endpoint).observe(process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response

# --- API Routers ---
app.include_router(public.router)
app.include_router(webhooks.router, prefix=f"/api/{settings.api_version}/webhooks")
app.include_router(sessions.router, prefix=f"/api/{settings.api_version}")

# --- Main Entry Point for Uvicorn (for local development) ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "127.0.0.1")

    uvicorn.run(
        "regdesk.main:app",
        host=host,
        port=port,
        reload=settings.environment == "development",
        workers=settings.workers if settings.environment == "production" else 1
    )
