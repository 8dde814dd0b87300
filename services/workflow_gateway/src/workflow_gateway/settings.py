from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_INPUT_VARIABLE = "text_input"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", frozen=True)

    app_env: str = "dev"
    log_level: str = "INFO"
    port: int = Field(default=3099, validation_alias="PORT")
    dify_api_url: str = Field(..., validation_alias="DIFY_API_URL")
    api_key: str = Field(..., validation_alias="API_KEY")
    # USER is the POSIX login name on most hosts, so the backend user id has its own variable.
    user: str | None = Field(default=None, validation_alias="DIFY_USER")
    system_input_variable: str | None = Field(
        default=None, validation_alias="SYSTEM_INPUT_VARIABLE"
    )
    input_variable: str | None = Field(default=None, validation_alias="INPUT_VARIABLE")
    output_variable: str | None = Field(default=None, validation_alias="OUTPUT_VARIABLE")
    model_name: str = Field(default="dify", validation_alias="MODEL_NAME")
    request_timeout_seconds: float = Field(
        default=300, validation_alias="REQUEST_TIMEOUT_SECONDS"
    )
    upload_concurrency: int = Field(default=1, ge=1, validation_alias="UPLOAD_CONCURRENCY")

    @field_validator("dify_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("DIFY_API_URL must not be empty")
        return value

    @field_validator("api_key")
    @classmethod
    def _api_key_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("API_KEY must not be empty")
        return value.strip()

    @field_validator("user", "system_input_variable", "input_variable", "output_variable")
    @classmethod
    def _blank_as_unset(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def resolved_input_variable(self) -> str:
        return self.input_variable or DEFAULT_INPUT_VARIABLE


@lru_cache
def get_settings() -> Settings:
    return Settings()
