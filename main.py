import logging
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from bson.errors import BSONError
from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator
from pymongo.errors import PyMongoError

from config import ConfigError, configure_logging, get_cors_origins, load_settings
from database import RecordStore, RecordStoreError
from schemas import RawEmail, coerce_date
from services import BookingService, ResortService, ServiceError, UserService, utcnow

configure_logging()
logger = logging.getLogger("resort_api")


# ----------------------------------------------------------------------------
# App & Lifecycle
# ----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Tests install their own store before the app starts.
    if getattr(app.state, "store", None) is None:
        try:
            settings = load_settings()
            app.state.store = RecordStore.connect(settings.database_url, settings.database_name)
        except (ConfigError, RecordStoreError):
            logger.exception("Startup failed")
            raise
    try:
        yield
    finally:
        app.state.store.close()
        app.state.store = None


app = FastAPI(
    title="Resort Booking API",
    description="Users, resort listings and resort bookings",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms
    )
    return response


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ----------------------------------------------------------------------------
# Error Handling
# ----------------------------------------------------------------------------
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------------------------------------------------------------
# Dependencies & Models
# ----------------------------------------------------------------------------
def get_store(request: Request) -> RecordStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Database not connected")
    return store


def get_user_service(store: RecordStore = Depends(get_store)) -> UserService:
    return UserService(store)


def get_resort_service(store: RecordStore = Depends(get_store)) -> ResortService:
    return ResortService(store)


def get_booking_service(store: RecordStore = Depends(get_store)) -> BookingService:
    return BookingService(store)


class CreateUserPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: RawEmail
    photoURL: Optional[str] = None


class UpdateRolePayload(BaseModel):
    email: str = Field(..., min_length=1)
    isAdmin: StrictBool


class UpdateInfoPayload(BaseModel):
    email: str = Field(..., min_length=1)
    age: Optional[int] = Field(None, ge=0)
    securityDeposit: Optional[float] = Field(None, ge=0)
    idNumber: Optional[str] = None


class CreateBookingPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None
    resortId: Optional[str] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    paymentInfo: Optional[Dict[str, Any]] = None

    @field_validator("startDate", "endDate", mode="before")
    @classmethod
    def _parse_dates(cls, value):
        return coerce_date(value)


class CancelBookingPayload(BaseModel):
    cancellationReason: Optional[str] = None


# ----------------------------------------------------------------------------
# Root & Health
# ----------------------------------------------------------------------------
@app.get("/", response_class=PlainTextResponse)
def read_root():
    return "Server is running"


@app.get("/health")
def health(request: Request):
    store = getattr(request.app.state, "store", None)
    connected = store is not None and store.ping()
    return {
        "status": "ok",
        "time": utcnow(),
        "db": "connected" if connected else "disconnected",
    }


@app.get("/test")
def test_database(store: RecordStore = Depends(get_store)):
    response = {
        "backend": "Running",
        "database": store.db.name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.collection_names()
        response["connection_status"] = "Connected"
    except PyMongoError as e:
        response["connection_status"] = f"Connected but Error: {str(e)[:80]}"
    return response


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------
@app.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(payload: CreateUserPayload, users: UserService = Depends(get_user_service)):
    user = users.create(payload.name, payload.email, payload.photoURL)
    return {"message": "User created", "data": user}


@app.get("/users")
def get_user(email: Optional[str] = None, users: UserService = Depends(get_user_service)):
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")
    return users.get_by_email(email)


@app.get("/all-users")
def list_users(users: UserService = Depends(get_user_service)):
    return users.list_all()


@app.patch("/update-user")
def update_user_role(payload: UpdateRolePayload, users: UserService = Depends(get_user_service)):
    result = users.set_admin(payload.email, payload.isAdmin)
    return {"message": "User role updated", **result}


@app.patch("/update-user-info")
def update_user_info(payload: UpdateInfoPayload, users: UserService = Depends(get_user_service)):
    result = users.update_info(payload.email, payload.model_dump(exclude={"email"}))
    return {"message": "User info updated", **result}


# ----------------------------------------------------------------------------
# Resorts
# ----------------------------------------------------------------------------
@app.get("/allResorts")
def list_resorts(resorts: ResortService = Depends(get_resort_service)):
    return resorts.list_all()


@app.post("/resorts")
def create_resort(
    payload: Dict[str, Any] = Body(...),
    resorts: ResortService = Depends(get_resort_service),
):
    return resorts.create(payload)


# ----------------------------------------------------------------------------
# Bookings
# ----------------------------------------------------------------------------
@app.post("/bookings", status_code=status.HTTP_201_CREATED)
def create_booking(
    payload: CreateBookingPayload,
    bookings: BookingService = Depends(get_booking_service),
):
    try:
        booking = bookings.create(payload.model_dump(exclude_unset=True))
    except (PyMongoError, BSONError, OverflowError) as e:
        logger.exception("Booking could not be stored")
        raise HTTPException(
            status_code=500,
            detail={"error": "Internal server error", "details": str(e)},
        )
    return {
        "message": "Booking confirmed successfully",
        "bookingId": booking["bookingId"],
        "data": booking,
    }


@app.get("/bookings")
def my_bookings(email: Optional[str] = None, bookings: BookingService = Depends(get_booking_service)):
    items = bookings.list_for_owner(email)
    return {"count": len(items), "data": items}


@app.get("/admin/bookings")
def admin_bookings(
    booking_status: Optional[str] = Query(None, alias="status"),
    resortId: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    bookings: BookingService = Depends(get_booking_service),
):
    items = bookings.admin_query(booking_status, resortId, startDate, endDate)
    return {"count": len(items), "data": items}


@app.put("/bookings/{booking_id}/cancel")
def cancel_booking(
    booking_id: str,
    payload: Optional[CancelBookingPayload] = None,
    bookings: BookingService = Depends(get_booking_service),
):
    reason = payload.cancellationReason if payload else None
    result = bookings.cancel(booking_id, reason)
    return {"message": "Booking cancelled successfully", **result}


if __name__ == "__main__":
    import uvicorn

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
