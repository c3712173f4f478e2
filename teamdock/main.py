from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from .config import settings
from .errors import register_exception_handlers
from .health import readiness_state
from .observability import configure_observability
from .routers import auth, profile

app = FastAPI(title="TeamDock")
configure_observability(app)
register_exception_handlers(app)

if settings.trusted_hosts:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_hosts)

if settings.security_https_redirect:
    app.add_middleware(HTTPSRedirectMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

_DOCS_PATHS = {"/docs", "/redoc", "/openapi.json", "/docs/oauth2-redirect"}
_CSP_POLICY = (
    "default-src 'self'; "
    "base-uri 'self'; "
    "frame-ancestors 'none'; "
    "object-src 'none'; "
    "form-action 'self'"
)


def _is_auth_path(path: str) -> bool:
    return path.startswith("/auth/") or path.startswith(
        f"/api/{settings.api_latest_version}/auth/"
    )


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.security_headers_enabled:
        return response

    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    # The success redirect carries the profile id in its query string.
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    if settings.security_csp_enabled and request.url.path not in _DOCS_PATHS:
        response.headers.setdefault("Content-Security-Policy", _CSP_POLICY)
    if settings.security_hsts_enabled and request.url.scheme == "https":
        response.headers.setdefault(
            "Strict-Transport-Security",
            f"max-age={settings.security_hsts_max_age_seconds}; includeSubDomains",
        )
    if _is_auth_path(request.url.path):
        response.headers["Cache-Control"] = "no-store"
        response.headers["Pragma"] = "no-cache"
    return response


def _include_routers() -> None:
    api_prefix = f"/api/{settings.api_latest_version}"
    app.include_router(auth.browser_router)
    for router in (auth.router, profile.router):
        app.include_router(router, prefix=api_prefix)


_include_routers()


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    is_ready, checks = readiness_state()
    if not is_ready:
        raise HTTPException(
            status_code=503,
            detail={
                "detail": "Service dependencies are not ready",
                "error_code": "service_not_ready",
            },
        )
    return {"status": "ok", "checks": checks}
