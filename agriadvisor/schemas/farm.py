"""
Farm profile schemas.
"""

from typing import List, Optional

from pydantic import ConfigDict, Field

from agriadvisor.schemas.base import BaseSchema, Coordinates


class FarmProfile(BaseSchema):
    """
    Farm profile as submitted by the dashboard.

    Fields not listed here are kept as-is and returned on read.
    """

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = Field(None, description="Farm identifier; generated when omitted")
    user_id: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    soil_type: Optional[str] = None
    farm_size: Optional[float] = Field(None, ge=0)
    irrigation: Optional[str] = None
    crops: List[str] = []
    previous_crops: List[str] = []
    coordinates: Optional[Coordinates] = None


class FarmProfileSaved(BaseSchema):
    status: str = "success"
    farm_id: str
