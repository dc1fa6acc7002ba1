"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    MAX_UPLOAD_BYTES: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DATABASE_URL: str
    AUTH_PROVIDER: str
    CLERK_SECRET_KEY: str
    CLERK_API_URL: str
    CLERK_JWKS_URL: str
    APP_URL: str
    ADMIN_EMAIL: str
    ADMIN_PASSWORD: str
    CLOUDINARY_CLOUD_NAME: str
    CLOUDINARY_API_KEY: str
    CLOUDINARY_API_SECRET: str
    STUDENT_COOKIE_MAX_AGE: int
    CODE_RATE_LIMIT_PER_MIN: int
    CODE_RATE_LIMIT_WINDOW_SECONDS: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB default
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.AUTH_PROVIDER = os.getenv("AUTH_PROVIDER", "local").lower()
        self.CLERK_SECRET_KEY = os.getenv("CLERK_SECRET_KEY", "")
        self.CLERK_API_URL = os.getenv("CLERK_API_URL", "https://api.clerk.com/v1").rstrip("/")
        self.CLERK_JWKS_URL = os.getenv("CLERK_JWKS_URL", "")
        self.APP_URL = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
        self.ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()
        self.ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")
        self.CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
        self.CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
        self.CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
        self.STUDENT_COOKIE_MAX_AGE = int(os.getenv("STUDENT_COOKIE_MAX_AGE", str(60 * 60 * 24 * 30)))  # 30 days
        self.CODE_RATE_LIMIT_PER_MIN = int(os.getenv("CODE_RATE_LIMIT_PER_MIN", "20"))
        self.CODE_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("CODE_RATE_LIMIT_WINDOW_SECONDS", "60"))
        self._validate()

    @property
    def cookie_secure(self) -> bool:
        return self.ENV != "dev"

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.AUTH_PROVIDER not in ("local", "clerk"):
            raise RuntimeError(f"unsupported AUTH_PROVIDER: {self.AUTH_PROVIDER}")
        if self.AUTH_PROVIDER == "clerk" and not self.CLERK_SECRET_KEY:
            raise RuntimeError("CLERK_SECRET_KEY is required when AUTH_PROVIDER=clerk")


settings = Settings()
