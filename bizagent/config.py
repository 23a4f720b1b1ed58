"""Configuration management for the business-operations agent."""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Application configuration."""

    # Persistence
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./bizagent.db")
    # Optional: shared cooldown state and Celery broker. Empty = single-instance mode.
    REDIS_URL: str = os.getenv("REDIS_URL", "")

    # LLM provider defaults.
    # The platform settings table (ai_provider / ai_base_url / ai_model) overrides these.
    AI_PROVIDER: str = os.getenv("AI_PROVIDER", "openai")  # "openai" or "lm_studio"
    AI_BASE_URL: str = os.getenv("AI_BASE_URL", "")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    # Hard deadline for the single LLM round trip of a message.
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "20"))
    LLM_SETTINGS_CACHE_SECONDS: int = int(os.getenv("LLM_SETTINGS_CACHE_SECONDS", "60"))

    # Cooldown after the provider reports rate limiting (seconds).
    LLM_COOLDOWN_DEFAULT_SECONDS: int = int(os.getenv("LLM_COOLDOWN_DEFAULT_SECONDS", "30"))
    LLM_COOLDOWN_MIN_SECONDS: int = int(os.getenv("LLM_COOLDOWN_MIN_SECONDS", "5"))
    LLM_COOLDOWN_MAX_SECONDS: int = int(os.getenv("LLM_COOLDOWN_MAX_SECONDS", "300"))
    # A success within this window keeps the availability indicator green.
    LLM_SUCCESS_RECENCY_SECONDS: int = int(os.getenv("LLM_SUCCESS_RECENCY_SECONDS", "600"))

    # Agent behavior
    AGENT_HISTORY_TURNS: int = int(os.getenv("AGENT_HISTORY_TURNS", "6"))
    AGENT_TOOL_CONTEXT_MAX_CHARS: int = int(os.getenv("AGENT_TOOL_CONTEXT_MAX_CHARS", "3800"))
    # When enabled, keyword-routed data questions are answered from tools without the LLM.
    # When disabled, the same tool outputs are only passed to the LLM as context.
    AGENT_HEURISTIC_REPLIES: bool = os.getenv("AGENT_HEURISTIC_REPLIES", "False").lower() == "true"
    AGENT_TOOL_WORKERS: int = int(os.getenv("AGENT_TOOL_WORKERS", "4"))

    # SMS provider (smsc.ua). SMS_API_KEY is "login:password".
    SMS_PROVIDER: str = os.getenv("SMS_PROVIDER", "smsc")
    SMS_API_KEY: str = os.getenv("SMS_API_KEY", "")
    SMS_SENDER: str = os.getenv("SMS_SENDER", "")
    SMS_TIMEOUT_SECONDS: float = float(os.getenv("SMS_TIMEOUT_SECONDS", "10"))

    # Push notifications about new appointments (delivered by a Celery worker).
    PUSH_NOTIFICATIONS_ENABLED: bool = os.getenv("PUSH_NOTIFICATIONS_ENABLED", "False").lower() == "true"
    PUSH_WEBHOOK_URL: str = os.getenv("PUSH_WEBHOOK_URL", "")

    # Application Settings
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Security
    API_KEY: str = os.getenv("API_KEY", "")  # For API authentication

    @classmethod
    def has_openai_key(cls) -> bool:
        """Check if a platform-wide OpenAI API key is configured."""
        return bool(cls.OPENAI_API_KEY)

    @classmethod
    def has_redis(cls) -> bool:
        """Check if Redis is configured."""
        return bool(cls.REDIS_URL)

    @classmethod
    def has_sms_config(cls) -> bool:
        """Check if SMS provider configuration is complete."""
        return all([
            cls.SMS_PROVIDER,
            cls.SMS_API_KEY,
        ])


# Create a global config instance
config = Config()
