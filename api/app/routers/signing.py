from typing import Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlmodel import Session
from ..db import get_session
from ..export import export_signed_pdf, get_quota_policy
from ..identity import current_user
from ..models import User
from ..schemas import PlacementRequest

router = APIRouter()


@router.post("")
async def sign_upload(
    file: UploadFile = File(...),
    signature: str = Form(...),
    page_index: int = Form(0),
    x: float = Form(0.0),
    y: float = Form(0.0),
    zoom: float = Form(1.0),
    canvas_width: Optional[float] = Form(None),
    canvas_height: Optional[float] = Form(None),
    offset_x: float = Form(0.0),
    offset_y: float = Form(0.0),
    signature_width: Optional[float] = Form(None),
    signature_height: Optional[float] = Form(None),
    signature_scale: float = Form(1.0),
    viewport_width: Optional[float] = Form(None),
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    policy: str = Depends(get_quota_policy),
):
    # stateless variant: the original never leaves the request
    data = await file.read()
    geom = PlacementRequest(
        signature=signature,
        page_index=page_index,
        x=x,
        y=y,
        zoom=zoom,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        offset_x=offset_x,
        offset_y=offset_y,
        signature_width=signature_width,
        signature_height=signature_height,
        signature_scale=signature_scale,
        viewport_width=viewport_width,
    )
    return export_signed_pdf(session, user, data, file.filename or "document.pdf", geom, policy)
