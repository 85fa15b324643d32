# nunyalearn/backend/core/config.py
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # 기본 앱 설정
    app_version: str = Field("0.1.0", alias="APP_VERSION")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_allow_origins: str = Field(
        "http://localhost:3000,http://localhost:8081", alias="CORS_ALLOW_ORIGINS"
    )

    # JWT
    jwt_secret_key: str = Field("nunyalearn-secret-key", alias="JWT_SECRET_KEY")
    jwt_refresh_secret: str = Field(
        "dev_refresh_secret_change_me", alias="JWT_REFRESH_SECRET"
    )
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    refresh_token_expire_days: int = Field(7, alias="REFRESH_TOKEN_EXPIRE_DAYS")
    refresh_token_rotation: bool = Field(False, alias="REFRESH_TOKEN_ROTATION")

    # 비밀번호 재설정
    password_reset_expire_minutes: int = Field(60, alias="PASSWORD_RESET_EXPIRE_MINUTES")
    # demo mode: echo the raw reset token in the HTTP response
    password_reset_expose_token: bool = Field(False, alias="PASSWORD_RESET_EXPOSE_TOKEN")

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
