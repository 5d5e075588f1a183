import logging
import os
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..compute import get_compute_backend
from ..config import Settings, load_settings
from ..errors import (
    AlreadyTerminalError,
    LedgerAuthorizationError,
    LedgerError,
    LedgerIndexError,
    RecordDecodeError,
    RecordNotFoundError,
    RecordUpdateError,
    UnauthorizedError,
    XrayCrystError,
)
from ..ledger_backends import get_ledger_client
from ..logging_config import audit_log, configure_logging, set_request_id
from ..records import RecordStatus
from ..store import RecordStore
from ..util import b64d
from ..wallet import FileWalletSigner, LocalWalletSigner, WalletSigner
from ..workflow import WorkflowEngine
from .models import AnalysisList, AnalysisOut, HealthOut, StatsOut, SubmitRequest
from .rate_limit import RateLimiter
from .security import (
    AuthenticationError,
    ValidationError,
    authenticate_caller,
    extract_client_id,
    sanitize_for_logging,
    signed_request_body,
    validate_record_id,
)

logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins
ERROR_STATUS = (
    (RecordNotFoundError, 404),
    (UnauthorizedError, 403),
    (AlreadyTerminalError, 409),
    (RecordUpdateError, 409),
    (RecordDecodeError, 502),
    (LedgerIndexError, 502),
    (LedgerAuthorizationError, 401),
    (LedgerError, 503),
)


def status_for_error(exc: XrayCrystError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return code
    return 500


def load_service_wallet(settings: Settings) -> WalletSigner:
    """Wallet the service signs ledger writes with."""
    if os.path.exists(settings.wallet_path):
        return FileWalletSigner(settings.wallet_path)
    if settings.env == "prod":
        raise RuntimeError(f"wallet key file not found: {settings.wallet_path}")
    logger.warning("wallet key file %s not found; using an ephemeral wallet", settings.wallet_path)
    return LocalWalletSigner.generate()


def build_engine(settings: Settings) -> WorkflowEngine:
    ledger = get_ledger_client(settings, signer=load_service_wallet(settings))
    return WorkflowEngine(RecordStore(ledger), get_compute_backend(settings))


def create_app(
    engine: Optional[WorkflowEngine] = None,
    settings: Optional[Settings] = None,
    submit_limiter: Optional[RateLimiter] = None,
    advance_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """
    Build the HTTP service.

    Args:
        engine: Workflow engine to serve (built from settings when omitted)
        settings: Runtime configuration (read from the environment when omitted)
        submit_limiter, advance_limiter: Per-caller rate limiters
    """
    settings = settings or load_settings()
    engine = engine or build_engine(settings)
    submit_limiter = submit_limiter or RateLimiter(settings.submit_rpm)
    advance_limiter = advance_limiter or RateLimiter(settings.advance_rpm)

    app = FastAPI(title="XrayCryst Analysis Ledger", version=__version__)
    app.state.engine = engine

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id") or None)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(XrayCrystError)
    async def _xraycryst_error(request: Request, exc: XrayCrystError):
        code = status_for_error(exc)
        if code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content={"error": type(exc).__name__, "detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"error": "ValidationError", "field": exc.field, "detail": exc.message})

    @app.exception_handler(AuthenticationError)
    async def _authentication_error(request: Request, exc: AuthenticationError):
        audit_log.authentication_failed(request.headers.get("x-wallet-address", ""), request.url.path, exc.code)
        return JSONResponse(status_code=401, content={"error": "AuthenticationError", "detail": exc.code})

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError):
        return JSONResponse(status_code=422, content={"error": "ValueError", "detail": str(exc)})

    def _limit(limiter: RateLimiter, request: Request, endpoint: str) -> None:
        client_id = extract_client_id(request.headers)
        result = limiter.check(client_id)
        if not result.allowed:
            audit_log.rate_limit_exceeded(client_id, endpoint)
            raise HTTPException(
                429,
                "RATE_LIMIT",
                headers={"Retry-After": str(int(result.retry_after or 0) + 1)},
            )

    @app.get("/health", response_model=HealthOut)
    def health():
        available = engine.store.is_available()
        return HealthOut(
            status="ok" if available else "degraded",
            ledger_available=available,
            version=__version__,
        )

    @app.get("/analyses", response_model=AnalysisList)
    def list_analyses(owner: Optional[str] = None, status: Optional[RecordStatus] = None):
        records = engine.store.list(owner=owner, status=status)
        return AnalysisList(analyses=[AnalysisOut.from_record(r) for r in records], count=len(records))

    @app.get("/analyses/stats", response_model=StatsOut)
    def analysis_stats():
        return StatsOut(**engine.store.stats())

    @app.get("/analyses/{analysis_id}", response_model=AnalysisOut)
    def get_analysis(analysis_id: str):
        return AnalysisOut.from_record(engine.store.get(validate_record_id(analysis_id)))

    @app.post("/analyses", response_model=AnalysisOut, status_code=201)
    def submit_analysis(req: SubmitRequest, request: Request):
        owner = authenticate_caller(request.headers, signed_request_body("submit", **req.model_dump()))
        _limit(submit_limiter, request, "submit")
        logger.info("submit from %s: %s", owner, sanitize_for_logging(req.model_dump()))
        if req.payload_b64:
            record = engine.submit(owner, b64d(req.payload_b64))
        elif req.image_name:
            record = engine.submit_image(owner, req.image_name, req.description)
        else:
            raise ValidationError("image_name", "image_name or payload_b64 is required")
        return AnalysisOut.from_record(record)

    @app.post("/analyses/{analysis_id}/advance", response_model=AnalysisOut)
    def advance_analysis(analysis_id: str, request: Request):
        analysis_id = validate_record_id(analysis_id)
        caller = authenticate_caller(request.headers, signed_request_body("advance", analysis_id=analysis_id))
        _limit(advance_limiter, request, "advance")
        return AnalysisOut.from_record(engine.advance(analysis_id, caller))

    return app


def run():
    """Serve the app with uvicorn (pip install xraycryst[server])."""
    import uvicorn

    settings = load_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    uvicorn.run(
        create_app(settings=settings),
        host=os.getenv("XRAYCRYST_HOST", "127.0.0.1"),
        port=int(os.getenv("XRAYCRYST_PORT", "8000")),
    )
