"""
Unified Configuration Module for the Job Multi-Poster

All configuration settings are centralized here.
Import from this module: from api.config import config

Core components never read the environment themselves; the builders at the
bottom of AppConfig turn these settings into injected collaborators.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


_PROVIDER_KEY_ENV = {
    "groq": "GROQ_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def _provider_key(provider: Optional[str]) -> Optional[str]:
    env_name = _PROVIDER_KEY_ENV.get((provider or "").lower())
    return os.getenv(env_name) if env_name else None


@dataclass
class AppConfig:
    """Unified application configuration."""

    # === Server Settings ===
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8080"))
    DEBUG: bool = _bool("DEBUG", "false")

    # === CORS Settings ===
    CORS_ORIGINS: List[str] = field(default_factory=lambda: [
        origin.strip() for origin in
        os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ])
    CORS_ALLOW_CREDENTIALS: bool = True

    # === Queue / Retry ===
    MAX_CONCURRENT_POSTS: int = int(os.getenv("MAX_CONCURRENT_POSTS", "3"))
    POSTING_MAX_ATTEMPTS: int = int(os.getenv("POSTING_MAX_ATTEMPTS", "3"))
    POSTING_RETRY_BASE_DELAY_SECONDS: float = float(os.getenv("POSTING_RETRY_BASE_DELAY_SECONDS", "3.0"))
    POSTING_RETRY_MAX_DELAY_SECONDS: float = float(os.getenv("POSTING_RETRY_MAX_DELAY_SECONDS", "300.0"))

    # === AI Providers ===
    LLM_PROVIDER: str = os.getenv("LLM_PROVIDER", "groq")
    LLM_MODEL: Optional[str] = os.getenv("LLM_MODEL")
    LLM_API_KEY: Optional[str] = os.getenv("LLM_API_KEY") or _provider_key(os.getenv("LLM_PROVIDER", "groq"))
    LLM_FALLBACK_PROVIDER: Optional[str] = os.getenv("LLM_FALLBACK_PROVIDER")
    LLM_FALLBACK_MODEL: Optional[str] = os.getenv("LLM_FALLBACK_MODEL")
    LLM_FALLBACK_API_KEY: Optional[str] = (
        os.getenv("LLM_FALLBACK_API_KEY") or _provider_key(os.getenv("LLM_FALLBACK_PROVIDER"))
    )
    LLM_COST_LIMIT: float = float(os.getenv("LLM_COST_LIMIT", "0.01"))
    LLM_ABORT_ON_COST_LIMIT: bool = _bool("LLM_ABORT_ON_COST_LIMIT", "false")
    LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))

    # === Form Discovery ===
    DISCOVERY_MIN_CONFIDENCE: float = float(os.getenv("DISCOVERY_MIN_CONFIDENCE", "0.7"))
    DISCOVERY_FIELD_MIN_CONFIDENCE: float = float(os.getenv("DISCOVERY_FIELD_MIN_CONFIDENCE", "0.5"))
    DISCOVERY_MAX_MARKUP_CHARS: int = int(os.getenv("DISCOVERY_MAX_MARKUP_CHARS", "8000"))

    # === Browser Automation ===
    # Browser environment: "LOCAL" or "BROWSERBASE"
    BROWSER_ENV: str = os.getenv("BROWSER_ENV", "LOCAL").upper()
    BROWSER_HEADLESS: bool = _bool("BROWSER_HEADLESS", "true")
    BROWSERBASE_API_KEY: Optional[str] = os.getenv("BROWSERBASE_API_KEY")
    BROWSERBASE_PROJECT_ID: Optional[str] = os.getenv("BROWSERBASE_PROJECT_ID")

    # === Timeouts (seconds) ===
    BROWSER_OPEN_TIMEOUT_SECONDS: float = float(os.getenv("BROWSER_OPEN_TIMEOUT_SECONDS", "30"))
    NAVIGATION_TIMEOUT_SECONDS: float = float(os.getenv("NAVIGATION_TIMEOUT_SECONDS", "30"))
    ELEMENT_TIMEOUT_SECONDS: float = float(os.getenv("ELEMENT_TIMEOUT_SECONDS", "10"))
    SUBMISSION_TIMEOUT_SECONDS: float = float(os.getenv("SUBMISSION_TIMEOUT_SECONDS", "15"))
    STEP_TIMEOUT_SECONDS: float = float(os.getenv("STEP_TIMEOUT_SECONDS", "90"))

    # === Human-like Delays ===
    MIN_FIELD_DELAY: float = float(os.getenv("MIN_FIELD_DELAY", "0.3"))
    MAX_FIELD_DELAY: float = float(os.getenv("MAX_FIELD_DELAY", "0.8"))

    # === Board Credentials ===
    DEFAULT_POSTING_USERNAME: str = os.getenv("DEFAULT_POSTING_USERNAME", "")
    DEFAULT_POSTING_PASSWORD: str = os.getenv("DEFAULT_POSTING_PASSWORD", "")

    # === Notifications ===
    PROGRESS_WEBHOOK_URL: str = os.getenv("PROGRESS_WEBHOOK_URL", "")

    # === Paths ===
    DATABASE_PATH: str = os.getenv("DATABASE_PATH", "./data/multiposter.db")
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    SCREENSHOT_DIR: str = os.getenv("SCREENSHOT_DIR", "./data/screenshots")

    def validate(self) -> List[str]:
        """Validate configuration and return list of missing required settings."""
        missing = []

        if not self.LLM_API_KEY:
            env_name = _PROVIDER_KEY_ENV.get(self.LLM_PROVIDER.lower(), "LLM_API_KEY")
            missing.append(f"LLM_API_KEY (or {env_name})")

        if self.LLM_FALLBACK_PROVIDER and not self.LLM_FALLBACK_API_KEY:
            missing.append("LLM_FALLBACK_API_KEY")

        # BrowserBase keys only required in BROWSERBASE mode
        if self.BROWSER_ENV == "BROWSERBASE":
            if not self.BROWSERBASE_API_KEY:
                missing.append("BROWSERBASE_API_KEY")
            if not self.BROWSERBASE_PROJECT_ID:
                missing.append("BROWSERBASE_PROJECT_ID")

        return missing

    # ============== Builders ==============

    def scheduler_config(self):
        from core.scheduler import SchedulerConfig
        return SchedulerConfig(
            max_concurrent_posts=self.MAX_CONCURRENT_POSTS,
            max_attempts=self.POSTING_MAX_ATTEMPTS,
            retry_base_delay=self.POSTING_RETRY_BASE_DELAY_SECONDS,
            retry_max_delay=self.POSTING_RETRY_MAX_DELAY_SECONDS,
        )

    def executor_config(self):
        from core.executor import ExecutorConfig
        return ExecutorConfig(
            open_timeout=self.BROWSER_OPEN_TIMEOUT_SECONDS,
            navigation_timeout=self.NAVIGATION_TIMEOUT_SECONDS,
            element_timeout=self.ELEMENT_TIMEOUT_SECONDS,
            submission_timeout=self.SUBMISSION_TIMEOUT_SECONDS,
            step_timeout=self.STEP_TIMEOUT_SECONDS,
            discovery_timeout=self.LLM_TIMEOUT_SECONDS * 2,
            min_confidence=self.DISCOVERY_MIN_CONFIDENCE,
            field_min_confidence=self.DISCOVERY_FIELD_MIN_CONFIDENCE,
            min_field_delay=self.MIN_FIELD_DELAY,
            max_field_delay=self.MAX_FIELD_DELAY,
            abort_on_cost_ceiling=self.LLM_ABORT_ON_COST_LIMIT,
        )

    def posting_credentials(self):
        from boards.base import PostingCredentials
        return PostingCredentials(
            username=self.DEFAULT_POSTING_USERNAME,
            password=self.DEFAULT_POSTING_PASSWORD,
        )

    def build_discovery(self, usage=None):
        """Form discovery service, or None when no AI key is configured."""
        from ai.form_discovery import FormDiscoveryService
        from ai.providers import create_provider

        if not self.LLM_API_KEY:
            return None
        primary = create_provider(
            self.LLM_PROVIDER, self.LLM_API_KEY, self.LLM_MODEL, timeout=self.LLM_TIMEOUT_SECONDS,
        )
        fallback = None
        if self.LLM_FALLBACK_PROVIDER and self.LLM_FALLBACK_API_KEY:
            fallback = create_provider(
                self.LLM_FALLBACK_PROVIDER,
                self.LLM_FALLBACK_API_KEY,
                self.LLM_FALLBACK_MODEL,
                timeout=self.LLM_TIMEOUT_SECONDS,
            )
        return FormDiscoveryService(
            primary,
            fallback,
            usage=usage,
            cost_ceiling=self.LLM_COST_LIMIT,
            max_markup_chars=self.DISCOVERY_MAX_MARKUP_CHARS,
        )

    def build_driver(self):
        from browser.driver import PlaywrightBrowserDriver
        return PlaywrightBrowserDriver(
            headless=self.BROWSER_HEADLESS,
            env=self.BROWSER_ENV,
            browserbase_api_key=self.BROWSERBASE_API_KEY,
            browserbase_project_id=self.BROWSERBASE_PROJECT_ID,
            default_timeout=self.STEP_TIMEOUT_SECONDS,
        )


# Global config instance
config = AppConfig()


def get_config() -> AppConfig:
    """Get the application configuration."""
    return config
