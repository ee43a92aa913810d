"""ATH detection."""

from .detector import ATHDetector, is_crossing, resolve_new_ath, validate_quote

__all__ = ["ATHDetector", "is_crossing", "resolve_new_ath", "validate_quote"]
