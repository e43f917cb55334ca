from __future__ import annotations

import gettext
from contextvars import ContextVar
from pathlib import Path
from typing import Optional

from core.logging_config import get_logger

_current_locale: ContextVar[str] = ContextVar("current_locale", default="en")
_translators: dict[str, gettext.NullTranslations] = {}
_logger = get_logger(__name__)

# English fallback used when no compiled catalogue provides the key
DEFAULT_MESSAGES: dict[str, str] = {
    "validation.domain": "Invalid data",
    "validation.failed": "Validation failed: {reason}",
    "error.internal": "Internal server error",
    "auth.unauthorized": "Unauthorized",
    "auth.token.expired": "Token expired",
    "checkout.invalid": "Invalid checkout data",
    "checkout.expired": "Checkout session expired, please restart checkout",
    "coupon.rejected": "Discount code rejected: {reason}",
    "payment.not_found": "Payment not found",
    "payment.already_exists": "Payment already exists",
    "payment.transition.invalid": "Payment cannot change from {current} to {target}",
    "payment.simulation.disabled": "Payment simulation is not available in this environment",
    "payment.provider.error": "Payment provider error",
    "payment.provider.timeout": "Payment provider timed out, please retry",
    "payment.signature.invalid": "Invalid signature",
}


def set_locale(locale: str) -> None:
    """Set current request locale (fallback to 'en')."""
    _current_locale.set(locale or "en")


def get_locale() -> str:
    """Get current request locale (default 'en')."""
    return _current_locale.get()


def _get_translator(locale: str) -> gettext.NullTranslations:
    tr = _translators.get(locale)
    if tr is not None:
        return tr
    localedir = Path(__file__).resolve().parent.parent / "locales"
    tr = gettext.translation(
        domain="messages",
        localedir=str(localedir),
        languages=[locale],
        fallback=True,
    )
    _translators[locale] = tr
    return tr


def t(msgid: str, default: Optional[str] = None, **params) -> str:
    """Translate msgid using current locale and format with params.

    Lookup order: compiled catalogue, DEFAULT_MESSAGES, ``default``, msgid itself.
    """
    text = _get_translator(get_locale()).gettext(msgid)
    if text == msgid:
        text = DEFAULT_MESSAGES.get(msgid) or default or msgid
    if not params:
        return text
    try:
        return text.format(**params)
    except (KeyError, IndexError, ValueError) as exc:
        _logger.warning("i18n_format_failed", msgid=msgid, params=list(params.keys()), error=str(exc))
        return text
