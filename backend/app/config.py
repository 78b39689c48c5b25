"""
Configuration management for the Policy Field Extraction service.
Loads extraction engine credentials and pipeline settings from environment variables.
"""
import os
from typing import Optional
from dotenv import load_dotenv

from app.services.policy_extraction.settings import ExtractionSettings

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Configuration class for extraction engine credentials and settings."""

    # Extraction engine (OpenAI-compatible chat completions API)
    LLM_API_KEY: Optional[str] = os.getenv('LLM_API_KEY') or os.getenv('OPENAI_API_KEY')
    LLM_API_BASE: str = os.getenv('LLM_API_BASE', 'https://api.openai.com/v1')
    LLM_MODEL: str = os.getenv('LLM_MODEL', 'gpt-4o')
    LLM_TIMEOUT: int = int(os.getenv('LLM_TIMEOUT', '60'))
    LLM_MAX_TOKENS: int = int(os.getenv('LLM_MAX_TOKENS', '2000'))

    # Pass controller
    MAX_PASSES: int = int(os.getenv('MAX_PASSES', '3'))
    SHORT_VALUE_THRESHOLD: int = int(os.getenv('SHORT_VALUE_THRESHOLD', '40'))
    LONG_VALUE_THRESHOLD: int = int(os.getenv('LONG_VALUE_THRESHOLD', '120'))
    REDERIVE_DESCRIPTIONS: bool = os.getenv('REDERIVE_DESCRIPTIONS', 'true').lower() == 'true'
    APPLY_FORMATTING: bool = os.getenv('APPLY_FORMATTING', 'true').lower() == 'true'
    CURRENCY_CODE: str = os.getenv('CURRENCY_CODE', 'QAR')

    # Transport retry (transport failures only)
    TRANSPORT_MAX_ATTEMPTS: int = int(os.getenv('TRANSPORT_MAX_ATTEMPTS', '3'))
    TRANSPORT_BACKOFF_SECONDS: float = float(os.getenv('TRANSPORT_BACKOFF_SECONDS', '1.0'))
    TRANSPORT_BACKOFF_MAX_SECONDS: float = float(os.getenv('TRANSPORT_BACKOFF_MAX_SECONDS', '8.0'))

    # Optional JSON file with additional document families
    FIELD_CATALOG_PATH: Optional[str] = os.getenv('FIELD_CATALOG_PATH')

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that configuration values are usable.
        """
        if cls.MAX_PASSES < 1:
            raise ValueError("MAX_PASSES must be at least 1.")

        if cls.LONG_VALUE_THRESHOLD < cls.SHORT_VALUE_THRESHOLD:
            raise ValueError(
                "LONG_VALUE_THRESHOLD must not be smaller than SHORT_VALUE_THRESHOLD.\n"
                f"  Got SHORT_VALUE_THRESHOLD={cls.SHORT_VALUE_THRESHOLD}, "
                f"LONG_VALUE_THRESHOLD={cls.LONG_VALUE_THRESHOLD}"
            )

        if cls.TRANSPORT_MAX_ATTEMPTS < 1:
            raise ValueError("TRANSPORT_MAX_ATTEMPTS must be at least 1.")

        if cls.FIELD_CATALOG_PATH and not os.path.isfile(cls.FIELD_CATALOG_PATH):
            raise ValueError(f"FIELD_CATALOG_PATH does not point to a file: {cls.FIELD_CATALOG_PATH}")
        return True

    @classmethod
    def get_extraction_settings(cls) -> ExtractionSettings:
        """
        Get the immutable settings value the pipeline constructors take.
        """
        return ExtractionSettings(
            max_passes=cls.MAX_PASSES,
            short_value_threshold=cls.SHORT_VALUE_THRESHOLD,
            long_value_threshold=cls.LONG_VALUE_THRESHOLD,
            rederive_descriptions=cls.REDERIVE_DESCRIPTIONS,
            apply_formatting=cls.APPLY_FORMATTING,
            currency_code=cls.CURRENCY_CODE,
            transport_max_attempts=cls.TRANSPORT_MAX_ATTEMPTS,
            transport_backoff_seconds=cls.TRANSPORT_BACKOFF_SECONDS,
            transport_backoff_max_seconds=cls.TRANSPORT_BACKOFF_MAX_SECONDS,
            llm_api_key=cls.LLM_API_KEY,
            llm_api_base=cls.LLM_API_BASE,
            llm_model=cls.LLM_MODEL,
            llm_timeout=cls.LLM_TIMEOUT,
            llm_max_tokens=cls.LLM_MAX_TOKENS,
        )
