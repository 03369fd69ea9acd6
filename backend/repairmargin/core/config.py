from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    # --- Text-generation collaborator ---
    ai_extraction_provider: str = "mock"
    ai_extraction_model: str = ""
    ai_allowed_providers_raw: str = Field(
        default="mock,openai,claude,groq",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_openai_raw: str = Field(
        default="gpt-4o,gpt-4o-mini",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS_OPENAI"),
    )
    ai_allowed_models_claude_raw: str = Field(
        default="claude-3-5-sonnet-20241022,claude-3-5-haiku-20241022",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS_CLAUDE"),
    )
    ai_allowed_models_groq_raw: str = Field(
        default="llama-3.3-70b-versatile",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS_GROQ"),
    )
    enable_ai_overrides: bool = False
    ai_temperature: float = 0.1
    ai_max_tokens: int = 2000
    ai_timeout_seconds: float = 60.0
    ai_extraction_max_chars: int = 12000
    ai_debug_store_raw: bool = False

    openai_api_key: str = ""
    anthropic_api_key: str = ""
    groq_api_key: str = ""

    # --- Primary text-extraction collaborator (webhook) ---
    text_extraction_webhook_url: str = ""
    text_extraction_timeout_seconds: float = 90.0

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: list[str] = Field(
        default_factory=lambda: [
            "license_plate",
            "vin",
            "email",
            "phone",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)
    security_headers_enabled: bool = True
    auto_create_tables: bool = False

    @field_validator(
        "cors_allow_origins",
        "pii_redaction_fields",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.ai_allowed_providers_raw)]

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        return {
            "openai": _parse_list_value(self.ai_allowed_models_openai_raw),
            "claude": _parse_list_value(self.ai_allowed_models_claude_raw),
            "groq": _parse_list_value(self.ai_allowed_models_groq_raw),
        }

@lru_cache

def get_settings() -> Settings:
    return Settings()
