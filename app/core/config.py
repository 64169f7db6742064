from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Mega Jump Booking API"
    # Comma-separated origins for CORS. If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""

    SECRET_KEY: str
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    DATABASE_URL: str

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v
    REDIS_URL: str = "redis://localhost:6379/0"

    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 25
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_STARTTLS: bool = False
    SMTP_FROM: str = "tickets@megajump.local"

    SENDGRID_API_KEY: str = ""
    SENDGRID_FROM_EMAIL: str = ""

    FRONTEND_URL: str = "http://localhost:3000"
    VENUE_NAME: str = "Mega Jump Trampoline Park"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CURRENCY: str = "eur"
    STRIPE_TIMEOUT_SECONDS: int = 25

    # Checkout
    CHECKOUT_DEFER_TICKET: bool = False  # True: PendingBooking until payment confirmed
    ADMIN_FEE: float = 2.5
    RELEASE_EXPIRED_CHECKOUTS: bool = False  # cancel pending tickets whose Stripe session expired
    ORPHAN_CHECKOUT_GRACE_MINUTES: int = 60

    # Background sweeps
    SWEEPS_AUTOSTART: bool = True
    TIMEZONE: str = "Europe/Amsterdam"
    PAYMENT_SYNC_INTERVAL_SECONDS: int = 600
    PAYMENT_SYNC_RECENT_HOURS: int = 24
    PAYMENT_SYNC_DAILY_AT: str = "23:59"  # HH:MM, local to TIMEZONE
    EMAIL_RETRY_INTERVAL_SECONDS: int = 120
    EMAIL_RETRY_WINDOW_HOURS: int = 24
    EMAIL_RETRY_COOLDOWN_MINUTES: int = 60

    # Gate scanner
    GATE_QUERY_TIMEOUT_MS: int = 3000

    # Bootstrap accounts (app.seed)
    ADMIN_EMAIL: str = "admin@megajump.local"
    ADMIN_PASSWORD: str = ""
    GATE_EMAIL: str = ""
    GATE_PASSWORD: str = ""


settings = Settings()
