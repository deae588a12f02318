import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import DATABASE_URL, CORS_ORIGINS, LOG_LEVEL, QUOTA_POLICY
from .db import Database
from .identity import TokenIdentityProvider
from .quota import normalize_policy
from .routers import documents, signing, signatures, billing as billing_router, webhooks
from . import billing

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="PDF e-signature API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Quota-Remaining", "X-Quota-Limit",
                    "X-Quota-Plan", "X-Quota-Period", "X-Usage-Recorded"],
)

# collaborators are constructed here and reached through app.state
app.state.database = Database(DATABASE_URL)
app.state.identity_provider = TokenIdentityProvider()
app.state.quota_policy = normalize_policy(QUOTA_POLICY)

@app.on_event("startup")
def on_startup():
    app.state.database.init()
    billing.configure()
    logger.info("signing API started (quota policy: %s)", app.state.quota_policy)

@app.on_event("shutdown")
def on_shutdown():
    app.state.database.dispose()

app.include_router(documents.router, prefix="/api/documents", tags=["documents"])
app.include_router(signing.router, prefix="/api/sign", tags=["signing"])
app.include_router(signatures.router, prefix="/api/signatures", tags=["signatures"])
app.include_router(billing_router.router, prefix="/api/billing", tags=["billing"])
app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])

@app.get("/")
def root():
    return {"ok": True, "service": "signing-api"}
