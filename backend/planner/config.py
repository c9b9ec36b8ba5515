"""Application settings and validation."""

import os


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    RATE_LIMIT_ENABLED: bool
    REFUND_WINDOW_DAYS: int
    DEV_USER_EMAIL: str
    PRODUCTION_DOMAIN: str
    SUPPORT_EMAIL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "development").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", "")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
        self.REFUND_WINDOW_DAYS = int(os.getenv("REFUND_WINDOW_DAYS", "7"))
        self.DEV_USER_EMAIL = os.getenv("DEV_USER_EMAIL", "dev-test@reviseme.local")
        self.PRODUCTION_DOMAIN = os.getenv("PRODUCTION_DOMAIN", "reviseme.co").lower()
        self.SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@reviseme.co")
        self._validate()

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def is_development(self) -> bool:
        return self.ENV == "development"

    @property
    def allows_dev_user(self) -> bool:
        """Whether unauthenticated onboarding calls may fall back to the dev user."""
        return self.ENV in ("development", "prelaunch")

    def _validate(self):
        if self.ENV != "development" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-development environments")
        if self.REFUND_WINDOW_DAYS < 0:
            raise RuntimeError("REFUND_WINDOW_DAYS must be >= 0")


settings = Settings()
