"""Configuration management for clinical-nlp using pydantic-settings.

Settings priority (highest to lowest):
1. CLI flags (applied after ClinicalNLPConfig creation)
2. Environment variables (CLINICAL_NLP_* prefix)
3. .env file
4. clinical_nlp.yaml project config
5. Default values
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

PROJECT_FILE = "clinical_nlp.yaml"

# Map clinical_nlp.yaml keys to ClinicalNLPConfig field names
_YAML_TO_FIELD = {
    "api_url": "api_url",
    "ner_model": "ner_model",
    "summarization_model": "summarization_model",
    "qa_model": "qa_model",
    "threshold": "confidence_threshold",
    "rpm": "rpm",
    "timeout": "timeout",
    "output": "output_dir",
    "seed": "seed",
}


class _ProjectYamlSource(PydanticBaseSettingsSource):
    """Read project config from clinical_nlp.yaml (lower priority than env vars)."""

    def get_field_value(self, field, field_name):  # type: ignore[override]
        return None, field_name, False

    def __call__(self) -> dict:
        project_file = Path(PROJECT_FILE)
        if not project_file.exists():
            return {}

        raw = yaml.safe_load(project_file.read_text()) or {}

        result: dict = {}
        for yaml_key, field_name in _YAML_TO_FIELD.items():
            if yaml_key in raw:
                result[field_name] = raw[yaml_key]
        return result


class ClinicalNLPConfig(BaseSettings):
    """Settings for the inference client and batch pipeline.

    All environment variables are prefixed with CLINICAL_NLP_ (e.g.
    CLINICAL_NLP_HF_API_KEY). The plain HUGGING_FACE_API_KEY variable is
    honoured as a fallback for the key. Empty values are treated as unset.

    Example:
        >>> config = ClinicalNLPConfig()
        >>> config.validate_api_key()
        >>> print(config.ner_model)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CLINICAL_NLP_",
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _ProjectYamlSource(settings_cls),
            file_secret_settings,
        )

    hf_api_key: str | None = Field(
        default=None,
        description="Hugging Face access token. Get from: https://huggingface.co/settings/tokens"
    )

    api_url: str = Field(
        default="https://router.huggingface.co/hf-inference/models",
        description="Base URL of the inference service; the model id is appended as a path segment"
    )

    ner_model: str = Field(
        default="d4data/biomedical-ner-all",
        description="Token-classification model backing every NER request"
    )

    summarization_model: str = Field(
        default="sshleifer/distilbart-cnn-12-6",
        description="Model backing summarization requests"
    )

    qa_model: str = Field(
        default="deepset/roberta-base-squad2",
        description="Extractive question-answering model"
    )

    confidence_threshold: float = Field(
        default=0.5,
        description="Minimum entity confidence kept by NER (0.0 - 1.0)"
    )

    rpm: int = Field(
        default=40,
        description="Max requests per minute sent to the inference service (0 disables limiting)"
    )

    timeout: float = Field(
        default=60.0,
        description="HTTP timeout in seconds for a single inference call"
    )

    output_dir: Path = Field(
        default=Path("output"),
        description="Directory for persisted analyses, batch jobs and exports"
    )

    seed: int | None = Field(
        default=None,
        description="Seed for the model-comparison simulator (unset = nondeterministic)"
    )

    @model_validator(mode="after")
    def _pick_up_plain_key(self) -> "ClinicalNLPConfig":
        """Fall back to HUGGING_FACE_API_KEY, the variable name the hosted service uses."""
        if not self.hf_api_key:
            self.hf_api_key = os.environ.get("HUGGING_FACE_API_KEY") or None
        return self

    @field_validator("confidence_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence_threshold must be between 0 and 1, got {v}")
        return v

    @field_validator("output_dir", mode="before")
    @classmethod
    def resolve_output_dir(cls, v: Path | str) -> Path:
        """Convert output_dir to absolute path and create if missing."""
        path = Path(v) if isinstance(v, str) else v
        path = path.resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def validate_api_key(self) -> None:
        """Raise ValueError if no Hugging Face token is configured."""
        if not self.hf_api_key:
            raise ValueError(
                "HUGGING_FACE_API_KEY not found. Set CLINICAL_NLP_HF_API_KEY or "
                "HUGGING_FACE_API_KEY in the environment or .env file.\n"
                "Get your token from: https://huggingface.co/settings/tokens"
            )
