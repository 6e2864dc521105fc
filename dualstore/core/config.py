from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Dual Store"
    ENVIRONMENT: str = "development"  # "production", "staging", "development", "test"

    # Store A (relational, via SQLModel)
    DATABASE_URL: str = "sqlite:///./dualstore.db"

    # Store B (Supabase-compatible REST + auth admin)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_ROLE_KEY: str = ""  # Required for auth admin reads and RLS-free writes
    STORE_B_ENABLED: bool = True  # False runs in storeB-disabled degradation mode
    STORE_B_HTTP_TIMEOUT: float = 10.0

    # Circuit breakers (one per backend)
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_OPEN_TIMEOUT: float = 60.0  # seconds
    CIRCUIT_PERSIST: bool = False  # Persist breaker state to Store A

    # Dual write
    WRITE_TIMEOUT_SECONDS: float = 5.0  # Deadline shared by both backend calls

    # Response envelope
    RESPONSE_VERSION: str = "1.0"

    # Admin endpoints (X-Admin-Key header); empty disables them
    ADMIN_API_KEY: str = ""

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")

    @property
    def store_b_configured(self) -> bool:
        return bool(self.STORE_B_ENABLED and self.SUPABASE_URL)


settings = Settings()
