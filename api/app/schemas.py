from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class PlacementRequest(BaseModel):
    """Signature data plus the geometry measured on screen at export time."""

    signature: str  # data:image/png;base64,... or data:image/jpeg;base64,...
    page_index: int = 0
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0
    canvas_width: Optional[float] = None  # omitted when the page is not rendered yet
    canvas_height: Optional[float] = None
    offset_x: float = 0.0
    offset_y: float = 0.0
    signature_width: Optional[float] = None
    signature_height: Optional[float] = None
    signature_scale: float = 1.0
    viewport_width: Optional[float] = None  # enables the estimated-geometry fallback


class RegisterSignature(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: Optional[str] = Field(default=None, alias="fileName")


class IdentityEvent(BaseModel):
    type: str
    data: dict
