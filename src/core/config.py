from enum import Enum
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_TITLE_PROMPT = (
    "Generate a short, descriptive title of 3 to 5 words (at most 50 characters) "
    "for a conversation that starts with the message below. "
    "Respond with the title only: no quotes, no punctuation at the end, no explanation."
)

DEFAULT_MIRRORING_INSTRUCTION = (
    'The user just said "{phrase}" to you. Open your reply by mirroring that affection '
    "back in kind, briefly and warmly, using the same words, then answer normally."
)


class Environment(str, Enum):
    DEV = "dev"
    PROD = "prod"


class Settings(BaseSettings):
    ENV: Environment = Environment.DEV
    LOG_LEVEL: str = "INFO"

    # =========================================================================
    # Database Configuration
    # =========================================================================
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432

    # =========================================================================
    # LLM Configuration
    # =========================================================================
    OPENAI_API_KEY: str
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_MODEL_NAME: str = "gpt-4o"
    OPENAI_TITLE_MODEL_NAME: str = "gpt-4o-mini"

    # =========================================================================
    # Prompts
    # =========================================================================
    SYSTEM_PROMPT: str
    ASSISTANT_NAME: str = "javier"
    TITLE_GENERATOR_SYSTEM_PROMPT: str = DEFAULT_TITLE_PROMPT
    AFFECTION_MIRRORING_INSTRUCTION: str = DEFAULT_MIRRORING_INSTRUCTION
    FALLBACK_REPLY: str = "Ask the real Javier, the system is down."

    # =========================================================================
    # Authentication (Google ID tokens)
    # =========================================================================
    GOOGLE_CLIENT_ID: str
    AUTH_VERIFY_ENABLED: bool = True
    ALLOWED_EMAILS: str = ""  # Comma separated, empty = any verified account
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # =========================================================================
    # Quotas
    # =========================================================================
    QUOTA_TIMEZONE: str = "America/Los_Angeles"  # Provider resets daily quotas at Pacific midnight
    CHAT_RATE_PER_MINUTE: int = 9
    CHAT_RATE_PER_DAY: int = 19
    TITLE_RATE_PER_MINUTE: int = 4
    TITLE_RATE_PER_DAY: int = 19
    MAX_MESSAGE_LENGTH: int = 100_000

    # =========================================================================
    # Langfuse Observability
    # =========================================================================
    LANGFUSE_PUBLIC_KEY: Optional[str] = None
    LANGFUSE_SECRET_KEY: Optional[str] = None
    LANGFUSE_HOST: Optional[str] = None

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def is_prod(self) -> bool:
        return self.ENV == Environment.PROD

    @property
    def allowed_emails(self) -> set[str]:
        """Normalized allow-list of sign-in emails."""
        return {email.strip().lower() for email in self.ALLOWED_EMAILS.split(",") if email.strip()}

    @property
    def langfuse_enabled(self) -> bool:
        return bool(self.LANGFUSE_PUBLIC_KEY and self.LANGFUSE_SECRET_KEY)

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL connection string."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def async_database_url(self) -> str:
        """SQLAlchemy URL using the psycopg (v3) async driver."""
        return self.database_url.replace("postgresql://", "postgresql+psycopg://")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
