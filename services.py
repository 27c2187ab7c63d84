"""
Services behind the HTTP routes.

Every service is built around the process-wide RecordStore it is handed and
keeps no other state, so a new instance per request is cheap.
"""

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from database import BOOKINGS, RESORTS, USERS, RecordStore, serialize_document
from schemas import Booking, Cancellation, User, parse_date

logger = logging.getLogger(__name__)

CARD_MASK = "•••• •••• •••• "
REFUND_WINDOW = timedelta(days=3)
DEFAULT_CANCELLATION_REASON = "User requested"

# Set by the server, never taken from the client payload.
RESERVED_BOOKING_FIELDS = {
    "_id",
    "bookingId",
    "status",
    "cancellation",
    "createdAt",
    "updatedAt",
    "paymentDate",
}
USER_INFO_FIELDS = ("age", "securityDeposit", "idNumber")


class ServiceError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ----------------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------------
def generate_booking_id() -> str:
    return f"TR-{random.randint(100000, 999999)}"


def mask_card_number(card_number: Any) -> str:
    return CARD_MASK + str(card_number)[-4:]


def format_display_date(value: Any) -> Any:
    """Render a stay date as e.g. ``Jun 10, 2025``; leave anything else alone."""
    parsed = parse_date(value)
    if parsed is None:
        return value
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def refund_deadline(start_date: datetime) -> datetime:
    return start_date - REFUND_WINDOW


def is_refund_eligible(start_date: Any, cancelled_at: datetime) -> bool:
    start = parse_date(start_date)
    if start is None:
        return False
    return cancelled_at < refund_deadline(start)


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------
class UserService:
    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def create(self, name: str, email: str, photo_url: Optional[str] = None) -> Dict[str, Any]:
        user = User(name=name, email=email, photoURL=photo_url, createdAt=self.clock())
        if self.store.find_one(USERS, {"email": user.email}):
            raise ConflictError("User already exists")

        doc = user.model_dump(exclude_none=True)
        self.store.create_document(USERS, doc)
        logger.info("Registered user %s", user.email)
        return serialize_document(doc)

    def get_by_email(self, email: str) -> Dict[str, Any]:
        user = self.store.find_one(USERS, {"email": email})
        if not user:
            raise NotFoundError("User not found")
        return serialize_document(user)

    def list_all(self) -> List[Dict[str, Any]]:
        return [serialize_document(u) for u in self.store.get_documents(USERS)]

    def set_admin(self, email: str, is_admin: bool) -> Dict[str, int]:
        result = self.store.update_one(USERS, {"email": email}, {"isAdmin": is_admin})
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        logger.info("Set isAdmin=%s for %s", is_admin, email)
        return {"matched": result.matched_count, "modified": result.modified_count}

    def update_info(self, email: str, fields: Dict[str, Any]) -> Dict[str, int]:
        values = {k: fields[k] for k in USER_INFO_FIELDS if fields.get(k) is not None}
        if not values:
            raise ServiceError("Nothing to update")
        result = self.store.update_one(USERS, {"email": email}, values)
        if result.matched_count == 0:
            raise NotFoundError("User not found")
        return {"matched": result.matched_count, "modified": result.modified_count}


# ----------------------------------------------------------------------------
# Resorts
# ----------------------------------------------------------------------------
class ResortService:
    def __init__(self, store: RecordStore):
        self.store = store

    def list_all(self) -> List[Dict[str, Any]]:
        return [serialize_document(r) for r in self.store.get_documents(RESORTS)]

    def create(self, document: Dict[str, Any]) -> Dict[str, Any]:
        inserted_id = self.store.create_document(RESORTS, dict(document))
        return {"acknowledged": True, "insertedId": str(inserted_id)}


# ----------------------------------------------------------------------------
# Bookings
# ----------------------------------------------------------------------------
class BookingService:
    """Booking lifecycle: create -> active -> cancelled."""

    MAX_ID_ATTEMPTS = 5

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Persist a new booking and return it with the card number masked.

        Booking ids are random; the unique index on ``bookingId`` rejects a
        collision and a fresh id is drawn. Store failures are not caught here.
        """
        data = {k: v for k, v in payload.items() if k not in RESERVED_BOOKING_FIELDS}
        error = None
        for _ in range(self.MAX_ID_ATTEMPTS):
            now = self.clock()
            booking = Booking(
                **data,
                bookingId=generate_booking_id(),
                createdAt=now,
                updatedAt=now,
                paymentDate=now,
            )
            doc = booking.model_dump(exclude_none=True)
            try:
                self.store.create_document(BOOKINGS, doc)
            except DuplicateKeyError as e:
                logger.warning("Booking id %s already taken, drawing another", booking.bookingId)
                error = e
                continue
            logger.info("Created booking %s for %s", booking.bookingId, booking.email)
            return self._masked(serialize_document(doc))
        raise error

    def list_for_owner(self, email: Optional[str]) -> List[Dict[str, Any]]:
        if not email:
            raise ServiceError("Email is required")
        docs = self.store.get_documents(
            BOOKINGS,
            {"email": email},
            sort=[("createdAt", -1)],
            projection={"paymentInfo": 0},
        )
        bookings = []
        for doc in docs:
            doc = serialize_document(doc)
            for field in ("startDate", "endDate"):
                if field in doc:
                    doc[field] = format_display_date(doc[field])
            bookings.append(doc)
        return bookings

    def admin_query(
        self,
        status: Optional[str] = None,
        resort_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if resort_id:
            query["resortId"] = resort_id
        if start_date:
            query["startDate"] = {"$gte": self._filter_date("startDate", start_date)}
        if end_date:
            query["endDate"] = {"$lte": self._filter_date("endDate", end_date)}

        docs = self.store.get_documents(BOOKINGS, query, sort=[("createdAt", -1)])
        return [serialize_document(d) for d in docs]

    def cancel(self, booking_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        booking = self._find(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        if booking.get("status") == "cancelled":
            raise ServiceError("Booking already cancelled")

        now = self.clock()
        cancellation = Cancellation(
            date=now,
            reason=reason or DEFAULT_CANCELLATION_REASON,
            refundEligible=is_refund_eligible(booking.get("startDate"), now),
        )
        # Only an active booking may be cancelled; the refund flag is never rewritten.
        result = self.store.update_one(
            BOOKINGS,
            {"_id": booking["_id"], "status": {"$ne": "cancelled"}},
            {"status": "cancelled", "updatedAt": now, "cancellation": cancellation.model_dump()},
        )
        if result.matched_count == 0:
            raise ServiceError("Booking already cancelled")

        # TODO: issue the refund through the payment provider once one is integrated.
        logger.info(
            "Cancelled booking %s (refund eligible: %s)",
            booking.get("bookingId"),
            cancellation.refundEligible,
        )
        return {
            "bookingId": booking.get("bookingId"),
            "refundEligible": cancellation.refundEligible,
            "cancellation": cancellation.model_dump(),
        }

    def _find(self, booking_id: str) -> Optional[Dict[str, Any]]:
        if ObjectId.is_valid(booking_id):
            booking = self.store.find_one(BOOKINGS, {"_id": ObjectId(booking_id)})
            if booking is not None:
                return booking
        return self.store.find_one(BOOKINGS, {"bookingId": booking_id})

    @staticmethod
    def _filter_date(name: str, value: str) -> datetime:
        parsed = parse_date(value)
        if parsed is None:
            raise ServiceError(f"Invalid {name}: expected an ISO 8601 date")
        return parsed

    @staticmethod
    def _masked(doc: Dict[str, Any]) -> Dict[str, Any]:
        info = doc.get("paymentInfo")
        if isinstance(info, dict) and info.get("cardNumber"):
            doc["paymentInfo"] = {**info, "cardNumber": mask_card_number(info["cardNumber"])}
        return doc
