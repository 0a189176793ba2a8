"""Application configuration module.

- **settings.py**: Environment-based settings (Pydantic BaseSettings)
  - Database URL, tick interval, history lookup timeout, timeline defaults
  - Loaded from .env file via pydantic-settings (PDP_ prefix)

- **protocol_rules.yaml**: Protocol thresholds
  - Hot-reloadable via ProtocolRulesLoader
  - Rep bands (T), cap/efficiency thresholds (R), EMOM defaults, HR limits
"""
from pdp_coach.config.settings import Settings, get_settings

# Protocol rules loader (lazy import to avoid circular dependencies)
# Use: from pdp_coach.config.protocol_rules_loader import get_protocol_rules

__all__ = ["Settings", "get_settings"]
