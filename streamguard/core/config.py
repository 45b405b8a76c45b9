"""
StreamGuard - Configuration Module
==================================

Centralized configuration management with environment variable validation.

DESIGN:
    A single Config dataclass is loaded from environment variables at
    startup. Every numeric moderation threshold lives here so operators can
    tune detection without touching code.

    Key patterns:
    - Singleton pattern via get_config() ensures one Config instance
    - Validation happens once at load time, not on every access
    - Out-of-range values are clamped and logged rather than fatal
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# =============================================================================
# Configuration Dataclass
# =============================================================================

@dataclass
class Config:
    """
    Engine configuration loaded from environment variables.

    Attributes:
        openai_api_key: API key for the classifier. Classifier is disabled
            when unset.
        classifier_model: Chat model used for classification.
        classifier_timeout: Seconds to wait for one classification.
        similarity_threshold: Word-overlap ratio above which a message is a
            repeat of a recent one.
        toxicity_threshold: Toxicity score above which a message is toxic.
        raid_ratio_threshold: Multiple of the rolling average viewer count
            above which a raid is suspicious.
        raid_viewer_limit: Absolute viewer count flagged by the trust-aware
            raid checks.
        min_account_age_days: Accounts younger than this are "new".
        raid_repeat_limit: Raids from one raider in 24h above which the
            raid is flagged.
        follow_rate_limit: Follows per hour above which a follower is
            flagged.
        sweep_interval: Seconds between maintenance sweeps.
        data_file: JSON snapshot path.
        command_prefix: Messages starting with this are never moderated.
    """

    # -------------------------------------------------------------------------
    # Classifier
    # -------------------------------------------------------------------------

    openai_api_key: Optional[str] = None
    classifier_model: str = "gpt-4o-mini"
    classifier_timeout: float = 5.0

    # -------------------------------------------------------------------------
    # Detection Thresholds
    # -------------------------------------------------------------------------

    similarity_threshold: float = 0.8
    toxicity_threshold: float = 0.8

    # -------------------------------------------------------------------------
    # Raid & Follow Protection
    # -------------------------------------------------------------------------

    raid_ratio_threshold: float = 10.0
    raid_viewer_limit: int = 1000
    min_account_age_days: int = 7
    raid_repeat_limit: int = 2
    follow_rate_limit: int = 10

    # -------------------------------------------------------------------------
    # Maintenance & Persistence
    # -------------------------------------------------------------------------

    sweep_interval: int = 3600
    data_file: Path = Path("data/moderation_data.json")

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    command_prefix: str = "!"

    # -------------------------------------------------------------------------
    # Webhooks
    # -------------------------------------------------------------------------

    error_webhook_url: Optional[str] = None


# =============================================================================
# Validation
# =============================================================================

class ConfigValidationError(Exception):
    """Raised when configuration is present but unusable."""

    pass


def _parse_int_with_default(
    value: Optional[str],
    default: int,
    name: str,
    min_val: Optional[int] = None,
    max_val: Optional[int] = None,
) -> int:
    """
    Parse optional integer with default and range validation.

    Args:
        value: String value from environment variable.
        default: Default value if not set or invalid.
        name: Variable name for warning messages.
        min_val: Minimum allowed value (inclusive).
        max_val: Maximum allowed value (inclusive).

    Returns:
        Parsed integer within valid range, or default.
    """
    if not value:
        return default
    from streamguard.core.logger import logger
    try:
        parsed = int(value)
    except ValueError:
        logger.warning(f"Config {name}='{value}' invalid, using default {default}")
        return default
    if min_val is not None and parsed < min_val:
        logger.warning(f"Config {name}={parsed} below min {min_val}, using {min_val}")
        return min_val
    if max_val is not None and parsed > max_val:
        logger.warning(f"Config {name}={parsed} above max {max_val}, using {max_val}")
        return max_val
    return parsed


def _parse_float_with_default(
    value: Optional[str],
    default: float,
    name: str,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
) -> float:
    """Float counterpart of _parse_int_with_default."""
    if not value:
        return default
    from streamguard.core.logger import logger
    try:
        parsed = float(value)
    except ValueError:
        logger.warning(f"Config {name}='{value}' invalid, using default {default}")
        return default
    if min_val is not None and parsed < min_val:
        logger.warning(f"Config {name}={parsed} below min {min_val}, using {min_val}")
        return min_val
    if max_val is not None and parsed > max_val:
        logger.warning(f"Config {name}={parsed} above max {max_val}, using {max_val}")
        return max_val
    return parsed


def _validate_url(value: Optional[str], name: str) -> Optional[str]:
    """
    Validate URL format for webhooks.

    Returns:
        URL if valid, None if invalid or empty.
    """
    if not value:
        return None
    if not value.startswith(("https://", "http://")):
        from streamguard.core.logger import logger
        logger.warning(f"Config {name} invalid URL format, ignoring")
        return None
    return value


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config() -> Config:
    """
    Load and validate configuration from environment variables.

    Returns:
        Validated Config object with all settings.

    Raises:
        ConfigValidationError: If COMMAND_PREFIX is set to whitespace.
    """
    command_prefix = os.getenv("COMMAND_PREFIX", "!")
    if not command_prefix.strip():
        raise ConfigValidationError("COMMAND_PREFIX cannot be blank")

    return Config(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        classifier_model=os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini"),
        classifier_timeout=_parse_float_with_default(
            os.getenv("CLASSIFIER_TIMEOUT"), 5.0, "CLASSIFIER_TIMEOUT", min_val=0.5, max_val=60.0
        ),
        similarity_threshold=_parse_float_with_default(
            os.getenv("SIMILARITY_THRESHOLD"), 0.8, "SIMILARITY_THRESHOLD", min_val=0.0, max_val=1.0
        ),
        toxicity_threshold=_parse_float_with_default(
            os.getenv("TOXICITY_THRESHOLD"), 0.8, "TOXICITY_THRESHOLD", min_val=0.0, max_val=1.0
        ),
        raid_ratio_threshold=_parse_float_with_default(
            os.getenv("RAID_RATIO_THRESHOLD"), 10.0, "RAID_RATIO_THRESHOLD", min_val=1.0
        ),
        raid_viewer_limit=_parse_int_with_default(
            os.getenv("RAID_VIEWER_LIMIT"), 1000, "RAID_VIEWER_LIMIT", min_val=1
        ),
        min_account_age_days=_parse_int_with_default(
            os.getenv("MIN_ACCOUNT_AGE_DAYS"), 7, "MIN_ACCOUNT_AGE_DAYS", min_val=0, max_val=365
        ),
        raid_repeat_limit=_parse_int_with_default(
            os.getenv("RAID_REPEAT_LIMIT"), 2, "RAID_REPEAT_LIMIT", min_val=0
        ),
        follow_rate_limit=_parse_int_with_default(
            os.getenv("FOLLOW_RATE_LIMIT"), 10, "FOLLOW_RATE_LIMIT", min_val=1
        ),
        sweep_interval=_parse_int_with_default(
            os.getenv("SWEEP_INTERVAL"), 3600, "SWEEP_INTERVAL", min_val=10, max_val=86400
        ),
        data_file=Path(os.getenv("DATA_FILE", "data/moderation_data.json")),
        command_prefix=command_prefix,
        error_webhook_url=_validate_url(os.getenv("ERROR_WEBHOOK_URL"), "ERROR_WEBHOOK_URL"),
    )


# =============================================================================
# Global Config Instance
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get the global configuration instance, loading if needed.

    Raises:
        ConfigValidationError: On first call if config is invalid.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def validate_and_log_config() -> Config:
    """
    Load the config (triggering validation) and log a summary.

    Returns:
        The loaded Config.
    """
    from streamguard.core.logger import logger

    config = get_config()

    logger.tree("Configuration Validated", [
        ("Classifier", config.classifier_model if config.openai_api_key else "Disabled (no API key)"),
        ("Similarity Threshold", f"{config.similarity_threshold:.0%}"),
        ("Toxicity Threshold", f"{config.toxicity_threshold:.0%}"),
        ("Raid Ratio", f"{config.raid_ratio_threshold:g}x"),
        ("Sweep Interval", f"{config.sweep_interval}s"),
        ("Data File", str(config.data_file)),
    ], emoji="⚙️")
    return config


# =============================================================================
# Module Export
# =============================================================================

__all__ = [
    "Config",
    "ConfigValidationError",
    "get_config",
    "load_config",
    "validate_and_log_config",
]
