import os

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./signing.db")
MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "minio:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
MINIO_SECRET_KEY = os.getenv("MINIO_SECRET_KEY", "minioadmin")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "signing")
MINIO_SECURE = os.getenv("MINIO_SECURE", "false").lower() in ("1", "true", "yes")
SECRET_KEY = os.getenv("SECRET_KEY", "devsecret")
IDENTITY_WEBHOOK_SECRET = os.getenv("IDENTITY_WEBHOOK_SECRET", SECRET_KEY)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_PREMIUM_PRICE_ID = os.getenv("STRIPE_PREMIUM_PRICE_ID")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")

# advisory: export always proceeds and the quota is only reported
# enforce: export is refused once the period's allowance is used up
QUOTA_POLICY = os.getenv("QUOTA_POLICY", "advisory")
FREE_WEEKLY_LIMIT = int(os.getenv("FREE_WEEKLY_LIMIT", "1"))
PREMIUM_MONTHLY_LIMIT = int(os.getenv("PREMIUM_MONTHLY_LIMIT", "50"))

SIGNATURE_BASE_WIDTH = float(os.getenv("SIGNATURE_BASE_WIDTH", "150"))
MOBILE_BREAKPOINT = int(os.getenv("MOBILE_BREAKPOINT", "1024"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
