import logging
from fastapi import APIRouter, Depends, UploadFile, File, HTTPException, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select
from minio.error import S3Error
from ..db import get_session
from ..errors import DocumentLoadError
from ..export import export_signed_pdf, get_quota_policy
from ..identity import current_user
from ..models import Document, User
from ..schemas import PlacementRequest
from ..stamper import load_document, page_size
from ..storage import put_bytes, get_bytes, delete_object, original_key
from ..utils import content_disposition, sha256_bytes

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_document(doc: Document):
    return {
        "id": doc.id,
        "filename": doc.filename,
        "sha256": doc.sha256,
        "page_count": doc.page_count,
        "page_size": {"width": doc.page_width, "height": doc.page_height},
        "created_at": doc.created_at,
    }


def _owned_document(session: Session, user: User, document_id: int) -> Document:
    doc = session.get(Document, document_id)
    if not doc or doc.user_id != user.id:
        raise HTTPException(404, "document not found")
    return doc


def _read_original(doc: Document) -> bytes:
    try:
        return get_bytes(doc.s3_key)
    except S3Error:
        raise HTTPException(404, "stored file missing for this document")


@router.post("")
async def upload_document(
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    data = await file.read()
    try:
        reader = load_document(data)
        # page 0 size is the reference for every later placement
        size = page_size(reader, 0)
    except DocumentLoadError as exc:
        raise HTTPException(400, str(exc))
    filename = file.filename or "document.pdf"
    doc = Document(
        user_id=user.id,
        filename=filename,
        s3_key="pending",
        sha256=sha256_bytes(data),
        page_count=len(reader.pages),
        page_width=size.width,
        page_height=size.height,
    )
    session.add(doc)
    session.flush()
    key = original_key(user.id, doc.id, filename)
    put_bytes(key, data, content_type="application/pdf")
    doc.s3_key = key
    session.add(doc)
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        delete_object(key)
        logger.exception("could not record document %s; stored original removed", key)
        raise
    session.refresh(doc)
    logger.info("stored original %s (%s pages) for user %s", key, doc.page_count, user.id)
    return _serialize_document(doc)


@router.get("")
def list_documents(
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    docs = session.exec(
        select(Document).where(Document.user_id == user.id).order_by(Document.created_at.desc())
    ).all()
    return [_serialize_document(d) for d in docs]


@router.get("/{document_id}")
def get_document(
    document_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    return _serialize_document(_owned_document(session, user, document_id))


@router.get("/{document_id}/pdf")
def download_document_pdf(
    document_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    doc = _owned_document(session, user, document_id)
    return Response(
        content=_read_original(doc),
        media_type="application/pdf",
        headers={"Content-Disposition": content_disposition(doc.filename)},
    )


@router.post("/{document_id}/sign")
def sign_stored_document(
    document_id: int,
    payload: PlacementRequest,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
    policy: str = Depends(get_quota_policy),
):
    doc = _owned_document(session, user, document_id)
    return export_signed_pdf(session, user, _read_original(doc), doc.filename, payload, policy)


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    doc = _owned_document(session, user, document_id)
    try:
        delete_object(doc.s3_key)
    except S3Error:
        logger.warning("stored object %s already gone", doc.s3_key)
    session.delete(doc)
    session.commit()
    return Response(status_code=204)
