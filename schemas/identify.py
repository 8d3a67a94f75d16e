"""
Pydantic schemas for the /identify endpoint
Handles request shape validation and response serialization.
Blank strings and "null" strings are normalized to absent values; whether
at least one identity fragment remains is decided by the engine.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(v):
    if isinstance(v, str) and v.strip().lower() in ("null", ""):
        return None
    return v


class IdentifyRequest(BaseModel):
    """
    Request schema for the /identify endpoint
    Each field is either absent or a non-empty string. Email is also
    required to contain "@", a stricter check than the identity contract
    itself needs; phone numbers are accepted as any string or number.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"email": "customer@example.com", "phoneNumber": "+1234567890"},
                {"email": "customer@example.com", "phoneNumber": None},
                {"email": None, "phoneNumber": "123-456-7890"},
            ]
        }
    )

    email: Optional[str] = Field(
        None,
        description="Customer email address",
        examples=["customer@example.com", None]
    )
    phone_number: Optional[str] = Field(
        None,
        alias="phoneNumber",  # API uses camelCase
        description="Customer phone number",
        examples=["+1234567890", "123-456-7890", None]
    )

    @field_validator('email', mode='before')
    @classmethod
    def validate_email(cls, v) -> Optional[str]:
        """
        Clean email input
        Converts blank and "null" strings to None
        """
        v = _blank_to_none(v)
        if v is None:
            return None
        if not isinstance(v, str):
            raise ValueError('Email must be a string')

        v = v.strip()
        if '@' not in v:
            raise ValueError('Invalid email format: email must contain @')
        return v

    @field_validator('phone_number', mode='before')
    @classmethod
    def validate_phone_number(cls, v) -> Optional[str]:
        """
        Clean phone number input
        Converts blank and "null" strings to None, numbers to strings
        """
        v = _blank_to_none(v)
        if v is None:
            return None

        # bool is an int subclass but never a phone number
        if isinstance(v, bool):
            raise ValueError('Phone number must be a string or number')
        if isinstance(v, (int, float)):
            v = str(int(v))  # Remove decimal point if it's a float

        if not isinstance(v, str):
            raise ValueError('Phone number must be a string or number')

        # Stored as provided, minus surrounding whitespace
        return v.strip()


class IdentifyResponse(BaseModel):
    """
    Consolidated view of one identity family
    Primary contact values come first in emails and phoneNumbers
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "primaryContactId": 1,
                "emails": ["customer@example.com", "customer2@example.com"],
                "phoneNumbers": ["+1234567890", "123-456-7890"],
                "secondaryContactIds": [2, 3]
            }
        }
    )

    primaryContactId: int = Field(
        description="ID of the primary contact"
    )
    emails: List[str] = Field(
        description="All email addresses associated with this contact",
        examples=[["customer@example.com", "customer2@example.com"]]
    )
    phoneNumbers: List[str] = Field(
        description="All phone numbers associated with this contact",
        examples=[["+1234567890", "123-456-7890"]]
    )
    secondaryContactIds: List[int] = Field(
        description="IDs of all secondary contacts linked to the primary",
        examples=[[2, 3, 4]]
    )


class ErrorDetail(BaseModel):
    """One field-level validation problem"""
    field: str
    message: str
    type: str


class ErrorResponse(BaseModel):
    """
    Error response schema for API errors
    """
    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": "ValidationError",
                    "message": "at least one of email or phoneNumber is required.",
                    "details": None
                },
                {
                    "error": "StorageError",
                    "message": "Unable to process identity reconciliation request",
                    "details": None
                }
            ]
        }
    )

    error: str = Field(
        description="Error type or category"
    )
    message: str = Field(
        description="Human-readable error message"
    )
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional error details"
    )
