import os
from dotenv import load_dotenv

# config.py

load_dotenv()

# IMPORTANT: These are default secret keys for development purposes ONLY.
# For production, use strong, randomly generated keys loaded from the environment.
SECRET_KEY: str = os.getenv("SECRET_KEY", "your-super-secret-key-please-change-in-production")
REFRESH_SECRET_KEY: str = os.getenv("REFRESH_SECRET_KEY", "your-refresh-secret-key-please-change-in-production")

ALGORITHM: str = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))
REFRESH_TOKEN_EXPIRE_DAYS: int = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))

# Frontend URL (for CORS)
FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:3000")

# Sentry Configuration
SENTRY_DSN: str = os.getenv("SENTRY_DSN", "your-sentry-dsn-goes-here") # Placeholder DSN

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./sql_app.db")

# OpenAI Configuration. An empty key disables the AI stage and every photo goes
# through the local filter pipeline.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_IMAGE_MODEL: str = os.getenv("OPENAI_IMAGE_MODEL", "dall-e-3")

# One of: analyze_only, analyze_generate, filter_only
ENHANCEMENT_MODE: str = os.getenv("ENHANCEMENT_MODE", "analyze_only")

# Timeouts (seconds) for each external boundary
ANALYSIS_TIMEOUT_SECONDS: float = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "30"))
GENERATION_TIMEOUT_SECONDS: float = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "60"))
DOWNLOAD_TIMEOUT_SECONDS: float = float(os.getenv("DOWNLOAD_TIMEOUT_SECONDS", "30"))
FILTER_TIMEOUT_SECONDS: float = float(os.getenv("FILTER_TIMEOUT_SECONDS", "30"))

BATCH_MAX_CONCURRENCY: int = int(os.getenv("BATCH_MAX_CONCURRENCY", "2"))

# Local storage
UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "uploads")
PROCESSED_DIR: str = os.getenv("PROCESSED_DIR", "processed")
FILE_RETENTION_DAYS: int = int(os.getenv("FILE_RETENTION_DAYS", "7"))

# Hard cap for a single uploaded file, independent of the subscription plan
MAX_UPLOAD_SIZE_MB: int = int(os.getenv("MAX_UPLOAD_SIZE_MB", "50"))

RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("1", "true", "yes")

VALID_ENHANCEMENT_MODES = ("analyze_only", "analyze_generate", "filter_only")


def validate_configuration():
    """
    Validates that critical configuration variables are not set to their
    default placeholder values.
    Raises ValueError if any critical variable is a placeholder.
    """
    critical_vars_and_placeholders = {
        "SECRET_KEY": "your-super-secret-key-please-change-in-production",
        "REFRESH_SECRET_KEY": "your-refresh-secret-key-please-change-in-production",
        # SENTRY_DSN's placeholder means Sentry is intentionally not configured.
        # An empty OPENAI_API_KEY means the filter fallback handles every photo.
    }
    problematic_vars = []
    for var_name, placeholder in critical_vars_and_placeholders.items():
        current_value = globals().get(var_name)
        if current_value == placeholder:
            problematic_vars.append(
                f"{var_name} (is set to a default placeholder value: '{placeholder}' and must be changed)"
            )
        elif not current_value:
            problematic_vars.append(f"{var_name} (is missing or empty)")

    if ENHANCEMENT_MODE not in VALID_ENHANCEMENT_MODES:
        problematic_vars.append(
            f"ENHANCEMENT_MODE (must be one of {', '.join(VALID_ENHANCEMENT_MODES)}, got '{ENHANCEMENT_MODE}')"
        )

    if problematic_vars:
        raise ValueError(
            "Configuration problems found:\n - " + "\n - ".join(problematic_vars)
        )

validate_configuration()
