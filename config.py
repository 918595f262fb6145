"""
Configuration management using Pydantic Settings with safe access wrapper
"""
from pydantic_settings import BaseSettings
from typing import Optional, Any


class Settings(BaseSettings):
    # Application settings
    app_name: str = "NLP Bus Service"
    version: str = "1.0.0"
    debug: bool = False
    environment: str = "production"

    # Server settings (HTTP surface)
    host: str = "0.0.0.0"
    port: int = 8080

    # Model resources: spaCy pipeline names, or sub-directories of model_dir
    model_dir: Optional[str] = None
    tokenizer_model: str = "en_core_web_sm"
    name_finder_model: str = "en_core_web_sm"
    pos_model: str = "en_core_web_sm"
    sentence_model: str = "en_core_web_sm"
    max_text_length: int = 100000
    inference_workers: int = 2

    # Bus settings
    topic_prefix: str = "nlp"
    analyze_mode: str = "inline"  # "inline" or "reference"
    request_timeout: float = 30.0

    # Reference store settings
    redis_url: Optional[str] = None
    redis_max_connections: int = 50
    redis_max_retries: int = 3
    reference_key_prefix: str = ""
    reference_key_locking: bool = True

    # Logging settings
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_file: str = "nlp_bus.log"
    log_file_max_bytes: int = 10485760
    log_file_backup_count: int = 10

    # Monitoring
    enable_metrics: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"   # allow unknown env vars without error

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.validate_settings()

    def validate_settings(self):
        """Validate critical settings on startup"""
        errors = []

        if self.environment not in ["development", "testing", "production"]:
            errors.append(f"Invalid environment: {self.environment}")

        valid_modes = ["inline", "reference"]
        if self.analyze_mode not in valid_modes:
            errors.append(f"Invalid analyze mode: {self.analyze_mode}. Valid options: {valid_modes}")

        if not self.topic_prefix or self.topic_prefix.endswith("."):
            errors.append(f"Invalid topic prefix: {self.topic_prefix!r}")

        if self.inference_workers < 1:
            errors.append("inference_workers must be at least 1")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")


class SafeSettings:
    """Safe wrapper for settings with fallback defaults"""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._defaults = {
            "tokenizer_model": "en_core_web_sm",
            "name_finder_model": "en_core_web_sm",
            "pos_model": "en_core_web_sm",
            "sentence_model": "en_core_web_sm",
            "inference_workers": 2,
            "topic_prefix": "nlp",
            "analyze_mode": "inline",
            "request_timeout": 30.0,
            "redis_url": None,
            "redis_max_retries": 3,
            "reference_key_locking": True,
            "log_level": "INFO",
            "environment": "production",
            "enable_metrics": True,
            "max_text_length": 100000,
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Safely get setting value with fallback"""
        try:
            value = getattr(self._settings, key, None)
            if value is None:
                value = self._defaults.get(key, default)
            return value
        except Exception:
            return self._defaults.get(key, default)

    def __getattr__(self, key: str) -> Any:
        """Proxy attribute access with safety"""
        return self.get(key)

    @property
    def raw(self) -> Settings:
        """Get raw settings object"""
        return self._settings

# Initialize settings with safety wrapper
_raw_settings = Settings()
settings = SafeSettings(_raw_settings)
