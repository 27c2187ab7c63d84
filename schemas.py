"""
Database Schemas for the Resort Booking API

Each Pydantic model describes the documents of one MongoDB collection:

- User    -> users
- Booking -> allBookings (Cancellation is embedded in Booking)

Resorts (allResorts) are stored as free-form documents and have no schema.
"""

from datetime import date, datetime, timezone
from typing import Annotated, Any, Dict, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator


def parse_date(value: Any) -> Optional[datetime]:
    """Return ``value`` as a naive UTC datetime, or None if it is not a date.

    Accepts datetimes, dates and ISO 8601 strings such as ``2025-06-10``,
    ``2025-06-10T14:00:00Z`` or ``2025-06-10T14:00:00+02:00``.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def coerce_date(value: Any) -> Any:
    """Field validator helper: parse date strings, reject unparseable ones."""
    if value is None:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError("must be an ISO 8601 date")
    return parsed


def check_email(value: str) -> str:
    """Validate an address but keep it exactly as the client wrote it.

    Lookups match the stored string, so no normalization happens here.
    """
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"value is not a valid email address: {e}") from e
    return value


RawEmail = Annotated[str, AfterValidator(check_email)]


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: RawEmail = Field(..., description="Unique email address, stored as submitted")
    photoURL: Optional[str] = Field(None, description="Profile photo URL")
    isAdmin: bool = Field(False, description="Administrator flag")
    age: Optional[int] = Field(None, ge=0)
    securityDeposit: Optional[float] = Field(None, ge=0, description="Security deposit amount")
    idNumber: Optional[str] = Field(None, description="Identity document number")
    createdAt: datetime


class Cancellation(BaseModel):
    date: datetime
    reason: str
    refundEligible: bool


class Booking(BaseModel):
    """Whatever the client sends is kept; these are the fields the API relies on."""

    model_config = ConfigDict(extra="allow")

    bookingId: str = Field(..., pattern=r"^TR-\d{6}$")
    email: Optional[str] = Field(None, description="Owner email")
    resortId: Optional[str] = None
    startDate: Optional[datetime] = None
    endDate: Optional[datetime] = None
    paymentInfo: Optional[Dict[str, Any]] = None
    status: str = Field("active", description="active | cancelled")
    cancellation: Optional[Cancellation] = None
    createdAt: datetime
    updatedAt: datetime
    paymentDate: Optional[datetime] = None

    @field_validator("startDate", "endDate", mode="before")
    @classmethod
    def _parse_stay_dates(cls, value):
        return coerce_date(value)
