"""
Settings from environment variables.

All config is loaded via Pydantic Settings with the NETTV_ prefix.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Portal account
    account_username: str = ""
    account_password: str = ""

    # Portal
    portal_base_url: str = "http://net.tv.cn"
    portal_variant: str = "html"  # "html" | "jsonp"
    request_timeout_seconds: int = 30
    user_agent: str = ""
    socks_proxy: str = ""  # e.g. socks5://127.0.0.1:1080
    portal_encoding: str = "utf-8"  # used when the portal omits a charset

    # Captcha
    captcha_enabled: bool = False
    captcha_max_attempts: int = 3
    captcha_solver: str = "local"  # "local" | "llm"
    captcha_ocr_command: str = "tesseract"
    captcha_ocr_timeout: float = 10.0  # seconds per recognize() call
    captcha_debug_dir: str = ""
    captcha_llm_api_key: str = ""
    captcha_llm_model: str = "claude-haiku-4-5-20251001"

    # Email notifications
    notification_enabled: bool = True
    mail_service: str = ""  # well-known provider name, overrides smtp_host/port
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_sender: str = ""
    mail_receiver: str = ""

    # Scheduling (empty = run once and exit)
    schedule_hours: str = ""
    timezone: str = "Asia/Shanghai"

    model_config = {
        "env_file": ".env",
        "env_prefix": "NETTV_",
    }


settings = Settings()


def load_settings(env_file: str) -> Settings:
    """Reload the shared ``settings`` instance from an explicit .env file."""
    fresh = Settings(_env_file=env_file)
    for name, value in fresh.model_dump().items():
        setattr(settings, name, value)
    return settings
