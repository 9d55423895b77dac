"""
Constants for the Consent Audit Service

Centralized values for service identification, legal basis wording,
anonymization placeholders and HTTP defaults.
"""

from typing import Final, Tuple, Dict

# =============================================================================
# SERVICE IDENTIFICATION
# =============================================================================

SERVICE_NAME: Final[str] = "consent-audit"
SERVICE_VERSION: Final[str] = "1.0.0"
API_PREFIX: Final[str] = "/api/consent"

# =============================================================================
# LEGAL BASIS
# =============================================================================

class LegalBasis:
    """Legal basis statements keyed by consent type"""
    NECESSARY: Final[str] = "Legitimate interest - essential for website functionality"
    FUNCTIONAL: Final[str] = "Consent - enhances user experience"
    ANALYTICS: Final[str] = "Consent - website analytics and performance monitoring"
    MARKETING: Final[str] = "Consent - targeted advertising and marketing"
    ALL: Final[str] = "Consent - all cookie categories"
    DEFAULT: Final[str] = "Consent"

    BY_TYPE: Final[Dict[str, str]] = {
        "necessary": NECESSARY,
        "functional": FUNCTIONAL,
        "analytics": ANALYTICS,
        "marketing": MARKETING,
        "all": ALL,
    }


# =============================================================================
# ANONYMIZATION
# =============================================================================

class Anonymization:
    """Placeholders written over identifying fields"""
    USER_ID_PREFIX: Final[str] = "anonymized_"
    USER_ID_KEEP_CHARS: Final[int] = 8
    PLACEHOLDER: Final[str] = "anonymized"


SYSTEM_ACTOR: Final[str] = "system"
UNKNOWN_CLIENT: Final[str] = "unknown"

# =============================================================================
# RECORD FIELDS
# =============================================================================

IMMUTABLE_RECORD_FIELDS: Final[Tuple[str, ...]] = (
    "id",
    "timestamp",
    "created_at",
    "expires_at",
    "data_retention_period",
    "consent_version",
    "legal_basis",
)

# =============================================================================
# HTTP DEFAULTS
# =============================================================================

DEFAULT_PAGE_LIMIT: Final[int] = 50
MAX_PAGE_LIMIT: Final[int] = 1000

DEFAULT_CORS_ORIGINS: Final[Tuple[str, ...]] = (
    "http://localhost:3000",
    "http://localhost:3001",
    "http://localhost:5000",
    "http://localhost:5001",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:3001",
    "http://127.0.0.1:5000",
    "http://127.0.0.1:5001",
)
