# quotedoc/config.py
from functools import lru_cache
from typing import Dict, List, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Service
    app_name: str = Field("quotedoc", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Upload guard applied by the HTTP layer before the engine sees any bytes
    max_template_mb: int = Field(50, alias="MAX_TEMPLATE_MB")

    # Comma separated list, "*" allows everything
    cors_origins: str = Field("*", alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()] or ["*"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# -----------------------------
# Business lookup tables
# -----------------------------
# These are defaults only. The engine receives them through explicit rule
# objects (see services.sanitizer.SanitizeRules and services.token_resolver),
# so a caller can pass different tables per render without touching globals.

# Monthly base cost per server instance type (USD)
INSTANCE_TYPE_COSTS: Dict[str, float] = {
    "small": 500.0,
    "standard": 1000.0,
    "large": 2000.0,
    "extra large": 3500.0,
}
DEFAULT_INSTANCE_TYPE = "Standard"

# Fixed per-GB overage rate by service tier, shown under "Overage Charges"
OVERAGE_PER_GB_RATES: Dict[str, str] = {
    "basic": "$1.00",
    "standard": "$1.50",
    "advanced": "$1.80",
}
OVERAGE_HEADING = "overage charges"

# Placeholder rates that templates ship with before a tier rate is known
OVERAGE_PLACEHOLDER_RATES: Tuple[str, ...] = ("$0.00", "$0", "$0.0")

# UTF-8 text that was decoded as Windows-1252 somewhere upstream
MOJIBAKE_REPLACEMENTS: Tuple[Tuple[str, str], ...] = (
    ("\u00e2\u20ac\u2122", "'"),   # right single quote
    ("\u00e2\u20ac\u02dc", "'"),   # left single quote
    ("\u00e2\u20ac\u0153", '"'),   # left double quote
    ("\u00e2\u20ac\u009d", '"'),   # right double quote
    ("\u00e2\u20ac\u201c", "-"),    # en dash
    ("\u00e2\u20ac\u201d", "-"),    # em dash
    ("\u00e2\u20ac\u2039", ""),     # zero-width space
    ("\u00c2", ""),                  # stray prefix before a non-breaking space
    ("\u00a0", " "),                 # non-breaking space
)

# Normalized (lowercased, whitespace-collapsed) texts of discount-only rows
DISCOUNT_ONLY_PHRASES: Tuple[str, ...] = ("discount", "n/a", "discount n/a")
DISCOUNT_SHORT_TEXT_LIMIT = 50

# Instance-specific validity boilerplate already folded into server descriptions.
# The agreement-level "valid for N months" sentence must not match these.
INSTANCE_VALIDITY_PATTERNS: Tuple[str, ...] = (
    r"^(?:each |the |this |all )?(?:server |migration )?instances? (?:is |are |will be )?valid for \d+ months?\.?$",
    r"^(?:each |the |this )?(?:server |migration )?instances? validity:? \d+ months?\.?$",
)

# Migration types whose documents carry no data-size figures
NO_DATA_SIZE_MIGRATION_TYPES: Tuple[str, ...] = ("messaging",)


# -----------------------------
# Static boilerplate used by the fallback document
# -----------------------------
FALLBACK_TITLE = "SERVICE AGREEMENT"
FALLBACK_TERMS = [
    "This agreement outlines the services to be provided for the migration and management of the client's data and systems as specified above.",
    "The total cost stated above covers all services including migration, data transfer, and the service period listed under Service Details.",
    "This agreement is valid from the date of signature and will be in effect for the duration specified above.",
]
