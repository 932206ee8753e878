from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator
import json


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./booking_messages.db"

    # JWT (tokens are issued by the auth service; we only verify them)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    DEFAULT_MESSAGE_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    # Search
    SEARCH_MIN_QUERY_LENGTH: int = 2

    # Attachment metadata
    ATTACHMENT_MAX_COUNT: int = 5
    ATTACHMENT_MAX_SIZE: int = 10 * 1024 * 1024
    ATTACHMENT_ALLOWED_TYPES: list[str] = [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "text/plain",
        "text/csv",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ]
    ATTACHMENT_URL_PREFIXES: list[str] = ["/uploads/attachments/"]

    # Rate limiting
    SEND_RATE_LIMIT: str = "30/minute"

    @field_validator("ATTACHMENT_ALLOWED_TYPES", "ATTACHMENT_URL_PREFIXES", mode="before")
    @classmethod
    def parse_string_list(cls, v):
        """Accept a JSON array or a comma separated string from the environment."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    raise ValueError(f"Invalid JSON list: {v}")
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    model_config = ConfigDict(env_file=".env")


settings = Settings()
