"""
Process settings read from the environment.

Secrets never go into config files by default; they come from ``TUTOR_*``
variables (or a ``.env`` file) and are copied into the pipeline
configuration with ``PipelineConfig.apply_settings``.
"""

from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    """
    Environment settings.

    Example:
        ```bash
        export TUTOR_OPENROUTER_API_KEY=sk-or-...
        export TUTOR_OPENAI_API_KEY=sk-...
        export TUTOR_CONFIG_PATH=~/.classroom-tutor/config.yaml
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="TUTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    config_path: Optional[str] = Field(default=None, description="Pipeline config file")
    openrouter_api_key: Optional[SecretStr] = Field(default=None, description="Completion API key")
    llm_base_url: Optional[str] = Field(default=None, description="Completion API base URL override")
    app_url: Optional[str] = Field(default=None, description="Sent as HTTP-Referer to the completion API")
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Key for the moderation and embeddings APIs",
    )
    vector_index_url: Optional[str] = Field(default=None, description="REST vector index URL")
    vector_index_api_key: Optional[SecretStr] = Field(default=None, description="Vector index key")
    grading_url: Optional[str] = Field(default=None, description="Assessment grading endpoint")
    grading_api_key: Optional[SecretStr] = Field(default=None, description="Grading service key")
    alert_webhook_url: Optional[str] = Field(default=None, description="Teacher alert webhook")
    log_level: str = Field(default="INFO", description="Root log level")
