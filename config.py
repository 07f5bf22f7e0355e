import os

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")
# Multi-document transactions need a replica set or sharded cluster
DATABASE_TRANSACTIONS = os.getenv("DATABASE_TRANSACTIONS", "false").lower() in ("1", "true", "yes")

SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
REFRESH_SECRET_KEY = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 4))
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", 7))

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 2 * 1024 * 1024))

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
PORT = int(os.getenv("PORT", 8000))
