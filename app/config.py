from typing import List, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "local"
    LOG_LEVEL: str = "INFO"

    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_db: str = "nevado"
    postgres_host: str = "localhost"
    postgres_port: str = "5432"

    # full URL wins over the postgres_* parts (tests use sqlite)
    DATABASE_URL: Optional[str] = None

    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_API_VERSION: str = "2024-06-20"
    STRIPE_CURRENCY: str = "pen"
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    # Checkout, amounts in cents
    FREE_SHIPPING_THRESHOLD: int = 5000
    SHIPPING_FEE: int = 800

    # Mail (Brevo)
    BREVO_API_KEY: Optional[str] = None
    MAIL_FROM: str = "noreply@heladeria-nevado.com"
    STORE_NAME: str = "Heladería Nevado"
    ADMIN_EMAILS: List[str] = []
    FRONTEND_URL: str = "http://localhost:5173"

    @property
    def database_url(self):
        if self.DATABASE_URL:
            return self.DATABASE_URL

        encoded_password = quote_plus(self.postgres_password)
        return (
            f"postgresql+psycopg2://{self.postgres_user}:"
            f"{encoded_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"

settings = Settings()
