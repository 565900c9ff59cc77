"""
Pydantic schemas for request/response validation.

This module contains:
- The inbound Twilio webhook payload
- The Log Row written to the spreadsheet
- Request/response models for the HTTP routes
"""

from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel, Field, ValidationError, field_validator

from autoreply.errors import MalformedInput
from autoreply.utils import format_12h_time, format_iso_timestamp, format_us_date


# =============================================================================
# Inbound Webhook
# =============================================================================

class InboundMessage(BaseModel):
    """
    Inbound WhatsApp message as posted by Twilio.

    Twilio sends form fields with capitalized names (From, To, Body,
    MessageSid); the aliases map them onto snake_case attributes.
    """
    from_number: str = Field(..., alias="From", description="Sender, e.g. whatsapp:+15551234567")
    to_number: Optional[str] = Field(None, alias="To", description="Our WhatsApp number")
    body: str = Field("", alias="Body", description="Message text")
    message_sid: Optional[str] = Field(None, alias="MessageSid", description="Twilio message SID")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("from_number")
    @classmethod
    def validate_sender(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("From must not be empty")
        return v

    @field_validator("body", mode="before")
    @classmethod
    def default_body(cls, v):
        return "" if v is None else v

    @classmethod
    def from_payload(cls, payload: dict) -> "InboundMessage":
        """
        Validate a decoded webhook body.

        Raises:
            MalformedInput: From is missing or blank, or a field has the wrong type
        """
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "body" for err in e.errors())
            raise MalformedInput(f"Invalid webhook payload ({fields}): {e.error_count()} error(s)") from e


# =============================================================================
# Spreadsheet Rows
# =============================================================================

class LogRow(BaseModel):
    """
    One logged inbound event: [phone, message, timestamp, date, time].

    Which of these land in which spreadsheet column is decided by the
    active SheetLayout, not by this model.
    """
    phone: str
    message: str = ""
    timestamp: str = ""
    date: str = ""
    time: str = ""

    @classmethod
    def capture(cls, phone: str, message: str, instant: datetime) -> "LogRow":
        """Build a row for an event that arrived at `instant` (an aware datetime)."""
        return cls(
            phone=phone,
            message=message,
            timestamp=format_iso_timestamp(instant),
            date=format_us_date(instant),
            time=format_12h_time(instant),
        )

    @classmethod
    def from_values(cls, values: Sequence) -> "LogRow":
        """Build a row from the ordered 5-field form."""
        if len(values) != 5:
            raise ValueError(f"expected 5 fields [phone, message, timestamp, date, time], got {len(values)}")
        phone, message, timestamp, date, time = ("" if v is None else str(v) for v in values)
        return cls(phone=phone, message=message, timestamp=timestamp, date=date, time=time)


class AppendResult(BaseModel):
    """Confirmation metadata returned by the Sheets append call."""
    updated_range: Optional[str] = None
    updated_cells: int = 0


# =============================================================================
# Send Message Route
# =============================================================================

class SendMessageRequest(BaseModel):
    """
    Body of POST /send-message. Missing fields fall back to the
    DEFAULT_TO / DEFAULT_FROM / CONTENT_SID / CONTENT_VARIABLES settings.
    """
    to: Optional[str] = None
    from_number: Optional[str] = Field(None, alias="from")
    content_sid: Optional[str] = Field(None, alias="contentSid")
    content_variables: Optional[str] = Field(None, alias="contentVariables")

    model_config = {"populate_by_name": True}


class SendMessageResponse(BaseModel):
    success: bool = True
    message_sid: str = Field(..., serialization_alias="messageSid")
    message: str = "Message sent successfully"


class SendMessageError(BaseModel):
    success: bool = False
    error: str


# =============================================================================
# Service Routes
# =============================================================================

class HealthResponse(BaseModel):
    """Response model for the health check endpoint."""
    status: str = Field(..., description="Health status")


class IndexResponse(BaseModel):
    """Response model for GET /."""
    message: str
    endpoints: dict[str, str]
    webhookUrl: str
    status: str


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")
