"""Application configuration."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Environment
    env: str = os.getenv("APP_ENV", "development")
    api_secret_key: str = os.getenv("API_SECRET_KEY", "dev-secret-key")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    database_url: str = os.getenv(
        "DATABASE_URL", "postgresql:///agentrunner?user=postgres"
    )

    # Celery
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379")

    # Sandbox
    e2b_api_key: str | None = os.getenv("E2B_API_KEY")
    e2b_domain: str | None = os.getenv("E2B_DOMAIN")
    sandbox_template: str | None = os.getenv("SANDBOX_TEMPLATE")

    # Agent credentials
    anthropic_api_key: str | None = os.getenv("ANTHROPIC_API_KEY")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    cursor_api_key: str | None = os.getenv("CURSOR_API_KEY")

    # AI gateway (commit messages, branch names, titles)
    ai_gateway_api_key: str | None = os.getenv("AI_GATEWAY_API_KEY")
    ai_gateway_url: str = os.getenv(
        "AI_GATEWAY_URL", "https://ai-gateway.vercel.sh/v1"
    )
    ai_gateway_model: str = os.getenv("AI_GATEWAY_MODEL", "openai/gpt-5-nano")

    # Git
    github_token: str | None = os.getenv("GITHUB_TOKEN")
    git_author_name: str = os.getenv("GIT_AUTHOR_NAME", "Coding Agent")
    git_author_email: str = os.getenv("GIT_AUTHOR_EMAIL", "agent@example.com")

    # Connector secrets
    encryption_key: str | None = os.getenv("ENCRYPTION_KEY")

    # Limits
    max_messages_per_day: int = int(os.getenv("MAX_MESSAGES_PER_DAY", "5"))
    max_sandbox_duration: int = int(
        os.getenv("MAX_SANDBOX_DURATION", "300")
    )  # minutes

    # Timeouts (in seconds)
    install_timeout: int = int(os.getenv("INSTALL_TIMEOUT", "600"))
    branch_name_wait_seconds: float = float(
        os.getenv("BRANCH_NAME_WAIT_SECONDS", "10")
    )
    branch_name_poll_interval: float = float(
        os.getenv("BRANCH_NAME_POLL_INTERVAL", "0.5")
    )


settings = Settings()
