import base64, binascii, hashlib, os
from urllib.parse import quote
from typing import Optional, Tuple
from itsdangerous import URLSafeSerializer, Signer
from .config import SECRET_KEY, IDENTITY_WEBHOOK_SECRET


def decode_data_url(data_url: str) -> Tuple[Optional[str], bytes]:
    # accepts "data:image/png;base64,....." or a bare base64 payload
    mime = None
    payload = (data_url or "").strip()
    if payload.startswith("data:") and "," in payload:
        header, payload = payload.split(",", 1)
        mime = header[5:].split(";", 1)[0] or None
    try:
        return mime, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc


def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()


def make_token(payload: dict, salt: str = "identity") -> str:
    s = URLSafeSerializer(SECRET_KEY, salt=salt)
    return s.dumps(payload)


def read_token(token: str, salt: str = "identity") -> dict:
    s = URLSafeSerializer(SECRET_KEY, salt=salt)
    return s.loads(token)


def sign_webhook_body(body: bytes) -> str:
    return Signer(IDENTITY_WEBHOOK_SECRET, salt="identity-webhook").get_signature(body).decode()


def verify_webhook_body(body: bytes, signature: str) -> bool:
    return Signer(IDENTITY_WEBHOOK_SECRET, salt="identity-webhook").verify_signature(body, signature)


def signed_filename(original: Optional[str]) -> str:
    name = os.path.basename(original or "") or "document.pdf"
    return f"signed-{name}"


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    # latin-1 only header values; non-ASCII names travel in filename* (RFC 5987)
    fallback = "".join(ch if 32 <= ord(ch) < 127 and ch not in '"\\' else "_" for ch in filename)
    value = f'{disposition}; filename="{fallback}"'
    if fallback != filename:
        value += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return value
