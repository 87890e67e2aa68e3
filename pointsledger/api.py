import logging
from typing import Any, Callable, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import (
    FirebaseIdentityProvider,
    IdentityProvider,
    StaticIdentityProvider,
    bearer_token,
    ensure_firebase_app,
)
from .config import Settings, configure_logging
from .errors import InvalidArgumentError, LedgerServiceError
from .service import LedgerService
from .storage import InMemoryStorage, LedgerStore

logger = logging.getLogger(__name__)


class CallableRequest(BaseModel):
    data: Any = None


def build_storage(settings: Settings) -> LedgerStore:
    if settings.backend == "firestore":
        from .firestore_storage import FirestoreStorage

        ensure_firebase_app()
        return FirestoreStorage(max_attempts=settings.transaction_attempts)
    return InMemoryStorage(max_attempts=settings.transaction_attempts)


def build_identity_provider(settings: Settings) -> IdentityProvider:
    if settings.auth == "firebase":
        return FirebaseIdentityProvider(ensure_firebase_app())
    return StaticIdentityProvider(settings.static_tokens)


def _payload(request: Optional[CallableRequest]) -> dict[str, Any]:
    if request is None or request.data is None:
        return {}
    if not isinstance(request.data, dict):
        raise InvalidArgumentError("Request data must be an object.")
    return request.data


def _error_response(error: LedgerServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=error.http_status,
        content={"error": {"status": error.code.status, "message": error.message}},
    )


def _call(operation: Callable[[], BaseModel]) -> JSONResponse:
    try:
        response = operation()
    except LedgerServiceError as e:
        return _error_response(e)
    return JSONResponse(content={"result": response.model_dump(by_alias=True, mode="json")})


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[LedgerService] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    service = service or LedgerService(build_storage(settings), settings)
    identity_provider = identity_provider or build_identity_provider(settings)

    app = FastAPI(
        title="PlsHelp Points Ledger API",
        description="Callable functions for listing payouts and reward redemptions",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Errors raised while resolving the caller, before an endpoint body runs.
    @app.exception_handler(LedgerServiceError)
    def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
        return _error_response(exc)

    def caller_id(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
        token = bearer_token(authorization)
        if token is None:
            return None
        return identity_provider.verify(token)

    @app.get("/health", tags=["System"])
    def health_check():
        return {"status": "healthy", "service": "points-ledger", "backend": settings.backend}

    @app.post("/createListing", tags=["Listings"])
    def create_listing(request: Optional[CallableRequest] = None, caller: Optional[str] = Depends(caller_id)) -> JSONResponse:
        return _call(lambda: service.create_listing(caller, _payload(request).get("totalCost")))

    @app.post("/completeListing", tags=["Listings"])
    def complete_listing(request: Optional[CallableRequest] = None, caller: Optional[str] = Depends(caller_id)) -> JSONResponse:
        def run():
            data = _payload(request)
            return service.complete_listing(caller, data.get("listingId"), data.get("fulfillerId"))

        return _call(run)

    @app.post("/redeemItem", tags=["Redemptions"])
    def redeem_item(request: Optional[CallableRequest] = None, caller: Optional[str] = Depends(caller_id)) -> JSONResponse:
        def run():
            data = _payload(request)
            return service.redeem_item(caller, data.get("pointsCost"), data.get("itemName"), data.get("itemId"))

        return _call(run)

    @app.post("/listRedemptions", tags=["Redemptions"])
    def list_redemptions(request: Optional[CallableRequest] = None, caller: Optional[str] = Depends(caller_id)) -> JSONResponse:
        return _call(lambda: service.list_redemptions(caller, _payload(request).get("limit", 50)))

    @app.post("/registerUser", tags=["Users"])
    def register_user(request: Optional[CallableRequest] = None, caller: Optional[str] = Depends(caller_id)) -> JSONResponse:
        def run():
            data = _payload(request)
            return service.register_user(caller, data.get("name"), data.get("email"))

        return _call(run)

    @app.post("/getBalance", tags=["Users"])
    def get_balance(request: Optional[CallableRequest] = None, caller: Optional[str] = Depends(caller_id)) -> JSONResponse:
        return _call(lambda: service.get_balance(caller))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
