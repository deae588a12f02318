"""The export chain shared by the upload-and-sign and stored-document routes.

read bytes -> parse PDF -> decode image -> resolve canvas geometry ->
compute placement -> draw -> serialize -> record usage (best effort).
"""
import logging
from typing import Optional

from fastapi import HTTPException, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from .config import QUOTA_POLICY
from .errors import SigningError, QuotaExceededError
from .models import User
from .placement import (
    Box, Point, Size, PlacementTransform, Placement, StaticGeometry, EstimatedGeometry,
    compute_placement, resolve_canvas_box, signature_displayed_size,
)
from .quota import QuotaStatus, check_quota, gate_export, register_usage
from .schemas import PlacementRequest
from .stamper import (
    SignatureImage, check_page_index, composite_signature, decode_signature_image, load_document, page_size,
)
from .utils import content_disposition, signed_filename

logger = logging.getLogger(__name__)


def get_quota_policy(request: Request) -> str:
    return getattr(request.app.state, "quota_policy", QUOTA_POLICY)


def build_placement(geom: PlacementRequest, image: SignatureImage, pdf_page_size) -> Placement:
    if geom.signature_width and geom.signature_height:
        displayed = Size(width=geom.signature_width, height=geom.signature_height)
    else:
        displayed = signature_displayed_size(geom.signature_scale, image.width, image.height)

    measured = None
    if geom.canvas_width:
        measured = Box(
            width=geom.canvas_width,
            height=geom.canvas_height or 0.0,
            offset_x=geom.offset_x,
            offset_y=geom.offset_y,
        )
    fallback = None
    if geom.viewport_width:
        fallback = EstimatedGeometry(
            geom.viewport_width, geom.zoom,
            page_aspect=pdf_page_size.height / pdf_page_size.width,
        )
    box = resolve_canvas_box(StaticGeometry(measured), fallback)
    return compute_placement(PlacementTransform(
        ui_position=Point(x=geom.x, y=geom.y),
        ui_zoom=geom.zoom,
        displayed_canvas=box,
        signature_displayed_size=displayed,
        pdf_page_size=pdf_page_size,
    ))


def sign_document(pdf_bytes: bytes, geom: PlacementRequest) -> bytes:
    reader = load_document(pdf_bytes)
    check_page_index(reader, geom.page_index)
    image = decode_signature_image(geom.signature)
    # page 0 is the scale reference for every page, matching how the viewer sizes its canvas
    placement = build_placement(geom, image, page_size(reader, 0))
    return composite_signature(reader, image, geom.page_index, placement)


def safe_quota(session: Session, user: User) -> Optional[QuotaStatus]:
    try:
        return check_quota(session, user)
    except SQLAlchemyError:
        logger.exception("quota check failed for user %s; continuing without it", user.id)
        session.rollback()
        return None


def record_usage(session: Session, user: User, file_name: str) -> bool:
    try:
        register_usage(session, user, file_name)
        return True
    except QuotaExceededError as exc:
        logger.warning("usage not recorded for user %s: %s", user.id, exc)
    except SQLAlchemyError:
        logger.exception("usage not recorded for user %s", user.id)
        session.rollback()
    return False


def export_signed_pdf(
    session: Session,
    user: User,
    pdf_bytes: bytes,
    file_name: str,
    geom: PlacementRequest,
    policy: str = QUOTA_POLICY,
) -> Response:
    before = safe_quota(session, user)
    if before is not None:
        try:
            gate_export(before, policy)
        except QuotaExceededError as exc:
            raise HTTPException(exc.status_code, str(exc))

    try:
        signed = sign_document(pdf_bytes, geom)
    except SigningError as exc:
        logger.warning("signing %s failed: %s", file_name, exc)
        raise HTTPException(exc.status_code, str(exc))
    except ValueError as exc:
        raise HTTPException(422, str(exc))

    headers = {"Content-Disposition": content_disposition(signed_filename(file_name))}
    recorded = record_usage(session, user, file_name)
    after = safe_quota(session, user)
    headers["X-Usage-Recorded"] = "true" if recorded else "false"
    if after is not None:
        headers.update({
            "X-Quota-Remaining": str(after.remaining),
            "X-Quota-Limit": str(after.max_signatures),
            "X-Quota-Plan": after.plan,
            "X-Quota-Period": after.period,
        })
    return Response(content=signed, media_type="application/pdf", headers=headers)
