# /regdesk/models/api.py

from pydantic import BaseModel, Field
from typing import Dict, Optional
from datetime import datetime

# Request and response bodies of the HTTP surface.

class APIResponse(BaseModel):
    success: bool
    message: str
    data: Optional[Dict] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str

class SimulateRequest(BaseModel):
    """Feeds a message through the engine as if it arrived from the sender."""
    sender_id: str = Field(..., min_length=3, max_length=32)
    text: str = Field(default="", max_length=1600)
    deliver: bool = False
