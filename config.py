import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))  # 24 hours
REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session_token")

ADMIN_EMAILS = [
    e.strip().lower() for e in os.getenv("ALLOW_ADMIN_EMAILS", "").split(",") if e.strip()
]

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")

AWS_REGION = os.getenv("AWS_REGION", "")
AWS_S3_BUCKET_NAME = os.getenv("AWS_S3_BUCKET_NAME", "")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
