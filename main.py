import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import schemas
from auth import RolePolicy, principal_from_header
from config import Settings, load_settings, setup_logging
from database import connect
from errors import (
    AlreadyClosed,
    AuctionClosed,
    AuctionError,
    BidTooLow,
    Forbidden,
    InvalidAmount,
    NotFound,
    StoreUnavailable,
    Unauthenticated,
    ValidationError,
    WriteConflict,
)
from notifications import DiscordWebhookChannel, NotificationEmitter
from scheduler import FinalizationScheduler
from service import AuctionService

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFound: 404,
    InvalidAmount: 400,
    AuctionClosed: 400,
    BidTooLow: 400,
    ValidationError: 400,
    Unauthenticated: 401,
    Forbidden: 403,
    AlreadyClosed: 409,
    WriteConflict: 409,
    StoreUnavailable: 503,
}


def status_code_for(exc: AuctionError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


def request_error(exc: RequestValidationError) -> ValidationError:
    """Report the first problem of a malformed request body as a ValidationError."""
    problems = exc.errors()
    if not problems:
        return ValidationError("Invalid request")
    first = problems[0]
    # loc is ("body", <camelCase field>, ...) for body fields
    path = [str(part) for part in first.get("loc", ()) if part != "body"]
    field = path[0] if path else None
    message = first.get("msg", "Invalid value")
    return ValidationError(f"{field}: {message}" if field else message, field=field)


def build_service(settings: Settings) -> AuctionService:
    channels = []
    if settings.discord_webhook_url:
        channels.append(
            DiscordWebhookChannel(
                settings.discord_webhook_url,
                page_url=settings.auctions_page_url,
                currency=settings.currency_label,
                timeout=settings.webhook_timeout_seconds,
            )
        )
    else:
        logger.warning("DISCORD_WEBHOOK_URL is not set, Discord notifications are disabled")
    return AuctionService(
        store=connect(settings.database_url, settings.database_name),
        emitter=NotificationEmitter(
            channels,
            max_workers=settings.notify_workers,
            max_pending=settings.notify_queue_limit,
        ),
        authorize=RolePolicy(settings.admin_role_ids),
        default_image_url=settings.default_image_url,
    )


# ---- Dependencies ----

def get_service(request: Request) -> AuctionService:
    return request.app.state.service


def current_principal(request: Request, authorization: Optional[str] = Header(None)) -> Optional[schemas.Principal]:
    return principal_from_header(authorization, request.app.state.settings.jwt_secret)


def require_principal(principal: Optional[schemas.Principal] = Depends(current_principal)) -> schemas.Principal:
    if principal is None:
        raise Unauthenticated()
    return principal


router = APIRouter()


@router.get("/")
def read_root():
    return {"message": "Auction API is running"}


@router.get("/api/auctions", response_model=List[schemas.Auction])
def list_auctions(service: AuctionService = Depends(get_service)):
    """Active auctions, soonest ending first"""
    return service.list_active()


@router.get("/api/auctions/{auction_id}", response_model=schemas.AuctionView)
def get_auction(auction_id: str, service: AuctionService = Depends(get_service)):
    return service.view(service.get(auction_id))


@router.post("/api/auctions/{auction_id}/bid")
def place_bid(
    auction_id: str,
    payload: schemas.PlaceBidRequest,
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    """Place a bid if the auction is open and the amount beats the current bid"""
    auction = service.place_bid(auction_id, principal, payload.bid_amount)
    return {"message": "Bid placed successfully.", "auction": service.view(auction)}


@router.get("/api/user")
def get_user(
    principal: Optional[schemas.Principal] = Depends(current_principal),
    service: AuctionService = Depends(get_service),
):
    if principal is None:
        return {"loggedIn": False}
    return {
        "loggedIn": True,
        "id": principal.id,
        "username": principal.username,
        "avatar": principal.avatar,
        "isAdmin": service.authorize(principal),
    }


# ---- Administration ----

@router.get("/api/admin/auctions", response_model=List[schemas.Auction])
def list_all_auctions(
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    return service.list_all(principal)


@router.post("/api/admin/auctions", response_model=schemas.Auction, status_code=201)
def create_auction(
    payload: schemas.CreateAuctionRequest,
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    """Create a new auction"""
    return service.create(principal, payload)


@router.patch("/api/admin/auctions/{auction_id}", response_model=schemas.Auction)
def update_auction(
    auction_id: str,
    payload: schemas.UpdateAuctionRequest,
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    """Edit display fields, or reschedule an auction that is no longer active"""
    return service.update(principal, auction_id, payload)


@router.delete("/api/admin/auctions/{auction_id}", response_model=schemas.Auction)
def delete_auction(
    auction_id: str,
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    return service.delete(principal, auction_id)


@router.post("/api/admin/auctions/{auction_id}/finalize", response_model=schemas.Auction)
def finalize_auction(
    auction_id: str,
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    return service.finalize(principal, auction_id)


@router.post("/api/admin/auctions/{auction_id}/cancel", response_model=schemas.Auction)
def cancel_auction(
    auction_id: str,
    principal: schemas.Principal = Depends(require_principal),
    service: AuctionService = Depends(get_service),
):
    return service.cancel(principal, auction_id)


# ---- Tooling ----

@router.get("/schema")
def get_schema_info():
    """Expose schema classes for tooling."""
    return {
        "auction": schemas.Auction.model_json_schema(),
        "bid": schemas.Bid.model_json_schema(),
        "event": schemas.AuctionEvent.model_json_schema(),
    }


@router.get("/test")
def test_backend(request: Request, service: AuctionService = Depends(get_service)):
    settings: Settings = request.app.state.settings
    response = {
        "backend": "✅ Running",
        "store": None,
        "scheduler": "✅ Running" if request.app.state.scheduler.running else "⚠️  Not running",
        "last_sweep_finalized": request.app.state.scheduler.last_sweep_count,
        "discord_webhook": "✅ Set" if settings.discord_webhook_url else "❌ Not Set",
        "jwt_secret": "✅ Set" if settings.jwt_secret else "❌ Not Set",
    }
    try:
        response["store"] = service.store.describe()
    except Exception as e:
        response["store"] = f"❌ Error: {str(e)[:50]}"
    return response


def create_app(settings: Optional[Settings] = None, service: Optional[AuctionService] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)
    service = service or build_service(settings)
    scheduler = FinalizationScheduler(service, settings.sweep_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.run_scheduler:
            scheduler.start()
        yield
        scheduler.shutdown()
        service.emitter.drain(timeout=settings.webhook_timeout_seconds)
        service.emitter.shutdown(wait=False)

    app = FastAPI(title="Discord Auction API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuctionError)
    async def auction_error_handler(request: Request, exc: AuctionError):
        status = status_code_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = request_error(exc)
        return JSONResponse(status_code=status_code_for(error), content=error.to_dict())

    app.state.settings = settings
    app.state.service = service
    app.state.scheduler = scheduler
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
