"""
Strict Base Models for API Request/Response Validation

Request bodies reject unknown fields so client typos fail fast with a 422
instead of being silently ignored. Response bodies tolerate extra fields
because they are often built from ORM rows or Redis snapshots.

Usage:
    class SubmitVideoRequest(StrictRequest):
        url: str

    class JobStatusResponse(StrictResponse):
        job_id: str
        status: str
"""

from pydantic import BaseModel, ConfigDict


class StrictRequest(BaseModel):
    """
    Base model for API request bodies with strict validation.

    Features:
        - extra="forbid": Unknown fields raise 422 Unprocessable Entity
        - validate_default=True: Validates default values
        - str_strip_whitespace=True: Trims whitespace from strings
    """

    model_config = ConfigDict(
        extra="forbid",  # Reject unknown fields
        validate_default=True,  # Validate defaults
        str_strip_whitespace=True,  # Clean string inputs
    )


class StrictResponse(BaseModel):
    """
    Base model for API response bodies.

    Features:
        - extra="ignore": Silently ignores extra fields
        - from_attributes=True: Allows ORM model conversion
    """

    model_config = ConfigDict(
        extra="ignore",  # Allow extra fields in responses
        validate_default=True,  # Validate defaults
        from_attributes=True,  # Enable ORM conversion
    )
