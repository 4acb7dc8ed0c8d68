from typing import List, Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///technotes.db")
    api_title: str = Field("techNotes API")
    bcrypt_rounds: int = Field(10, ge=4, le=31)
    default_roles: List[str] = Field(default_factory=lambda: ["Employee"])
    login_rate_limit: str = Field("5 per 15 minutes")
    access_token_expire_minutes: int = Field(15)
    refresh_token_expire_minutes: int = Field(60 * 24 * 7)
    jwt_secret: str = Field("secret")
    jwt_algorithm: str = Field("HS256")
    admin_username: Optional[str] = Field(None)
    admin_password: Optional[str] = Field(None)


settings = Settings()
