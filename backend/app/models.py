"""
Pydantic models for application-level API schemas.

Extraction request/response models live with their router in
app/routes/policy_extraction.py.
"""
from datetime import datetime
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
