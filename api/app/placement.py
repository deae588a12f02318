"""Mapping of an on-screen signature overlay into PDF point-space.

UI pixel-space has its origin at the top-left of the container the overlay
is dragged in; PDF point-space has its origin at the bottom-left of the page.
The browser renders the page onto a canvas whose width already includes the
zoom factor, so a single ratio (page width in points over canvas width in
pixels) converts both position and size.
"""
import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .config import SIGNATURE_BASE_WIDTH, MOBILE_BREAKPOINT
from .errors import GeometryUnavailableError

logger = logging.getLogger(__name__)


class Point(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0


class Size(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: float
    height: float


class Box(BaseModel):
    """Rendered canvas size plus its offset inside the overlay's container."""

    model_config = ConfigDict(frozen=True)

    width: float
    height: float
    offset_x: float = 0.0
    offset_y: float = 0.0


class PlacementTransform(BaseModel):
    model_config = ConfigDict(frozen=True)

    ui_position: Point
    ui_zoom: float = 1.0
    displayed_canvas: Box
    signature_displayed_size: Size
    pdf_page_size: Size


class Placement(BaseModel):
    model_config = ConfigDict(frozen=True)

    pdf_position: Point
    pdf_size: Size
    scale_ratio: float


def compute_placement(transform: PlacementTransform) -> Placement:
    canvas = transform.displayed_canvas
    if canvas.width <= 0:
        raise ValueError("displayed canvas width must be positive")
    page = transform.pdf_page_size
    ratio = page.width / canvas.width

    size = Size(
        width=transform.signature_displayed_size.width * ratio,
        height=transform.signature_displayed_size.height * ratio,
    )
    x = (transform.ui_position.x - canvas.offset_x) * ratio
    # flip: UI y grows downwards, PDF y grows upwards from the page bottom
    y = page.height - (transform.ui_position.y - canvas.offset_y) * ratio - size.height
    return Placement(pdf_position=Point(x=x, y=y), pdf_size=size, scale_ratio=ratio)


def signature_displayed_size(
    scale: float,
    natural_width: Optional[float] = None,
    natural_height: Optional[float] = None,
    base_width: float = SIGNATURE_BASE_WIDTH,
) -> Size:
    """Overlay size on screen: base width times scale, keeping the image aspect ratio."""
    width = base_width * scale
    if not natural_width or not natural_height:
        return Size(width=width, height=width)
    return Size(width=width, height=width * (natural_height / natural_width))


def estimate_displayed_width(
    viewport_width: float,
    ui_zoom: float = 1.0,
    mobile_breakpoint: int = MOBILE_BREAKPOINT,
) -> float:
    if viewport_width < mobile_breakpoint:
        return min(viewport_width - 40, 800) * ui_zoom
    # desktop layout reserves room for the sidebar and padding
    return min(viewport_width - 500, 1000) * ui_zoom


class ViewportGeometryProvider:
    """Source of the rendered canvas geometry at export time."""

    def canvas_box(self) -> Box:
        raise NotImplementedError


class StaticGeometry(ViewportGeometryProvider):
    """Geometry measured by the client from the live rendering surface."""

    def __init__(self, box: Optional[Box]):
        self.box = box

    def canvas_box(self) -> Box:
        if self.box is None or self.box.width <= 0:
            raise GeometryUnavailableError("rendering surface not present")
        return self.box


class EstimatedGeometry(ViewportGeometryProvider):
    def __init__(self, viewport_width: float, ui_zoom: float = 1.0, page_aspect: Optional[float] = None):
        self.viewport_width = viewport_width
        self.ui_zoom = ui_zoom
        self.page_aspect = page_aspect

    def canvas_box(self) -> Box:
        width = estimate_displayed_width(self.viewport_width, self.ui_zoom)
        if width <= 0:
            raise GeometryUnavailableError(f"viewport width {self.viewport_width} too small to estimate")
        height = width * self.page_aspect if self.page_aspect else 0.0
        return Box(width=width, height=height)


def resolve_canvas_box(
    primary: ViewportGeometryProvider,
    fallback: Optional[ViewportGeometryProvider] = None,
) -> Box:
    try:
        return primary.canvas_box()
    except GeometryUnavailableError as exc:
        if fallback is None:
            raise
        logger.warning("canvas geometry unavailable (%s); using estimated geometry", exc)
        return fallback.canvas_box()
