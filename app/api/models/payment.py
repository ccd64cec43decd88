# app/api/models/payment.py
from pydantic import BaseModel, Field


class PremiumContentResponse(BaseModel):
    """Response model for the paid premium content resource."""
    title: str = Field(..., description="Content title")
    content: str = Field(..., description="The premium content body")
    timestamp: str = Field(..., description="ISO-8601 time the content was served")


class CreditsData(BaseModel):
    walletAddress: str = Field(..., description="Address credited in the ledger")
    credits: int = Field(..., description="Credits allocated for this payment")
    timestamp: str = Field(..., description="ISO-8601 time of the allocation")


class CreditsResponse(BaseModel):
    """Response model for a successful credit purchase."""
    success: bool = True
    data: CreditsData


class ErrorResponse(BaseModel):
    """Structured error body returned by payment-gated endpoints."""
    success: bool = False
    error: str = Field(..., description="Human readable error message")
    code: str = Field(..., description="Stable machine readable error code")
