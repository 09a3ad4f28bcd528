import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

PORT = int(os.getenv("PORT", 8000))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Product image bucket
STORAGE_DIR = os.getenv("STORAGE_DIR", "./storage")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 5 * 1024 * 1024))

FEED_POLL_INTERVAL = float(os.getenv("FEED_POLL_INTERVAL", 1.0))
DEFAULT_RADIUS_KM = float(os.getenv("DEFAULT_RADIUS_KM", 50))
# Upper bound for radius_km on nearby lookups
MAX_RADIUS_KM = float(os.getenv("MAX_RADIUS_KM", 500))
