from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import set_locale

SUPPORTED_LOCALES = {"en", "es"}


def _pick_from_accept_language(al: str) -> str:
    """Parse Accept-Language with q weights, return best supported lang.

    Examples:
      'es-EC,es;q=0.9,en;q=0.8' -> 'es'
    """
    items = []
    for part in al.split(","):
        seg = part.strip().split(";", 1)
        lang = seg[0].strip()
        if not lang:
            continue
        q = 1.0
        if len(seg) == 2 and seg[1].strip().startswith("q="):
            try:
                q = float(seg[1].strip()[2:])
            except ValueError:
                q = 0.0
        items.append((_normalize(lang), q))
    items.sort(key=lambda x: x[1], reverse=True)
    for lang, _ in items:
        if lang in SUPPORTED_LOCALES:
            return lang
    return "en"


def _normalize(lang: str) -> str:
    """es-EC / es_EC -> es"""
    return (lang or "en").replace("_", "-").split("-", 1)[0].lower()


class LocaleMiddleware(BaseHTTPMiddleware):
    """Parse locale from query/header and set into context.

    Priority: ?lang=xx > X-Lang > Accept-Language > default 'en'.
    """

    async def dispatch(self, request: Request, call_next):
        lang = request.query_params.get("lang") or request.headers.get("X-Lang")
        if lang:
            lang = _normalize(lang)
            if lang not in SUPPORTED_LOCALES:
                lang = "en"
        else:
            al = request.headers.get("Accept-Language", "")
            lang = _pick_from_accept_language(al) if al else "en"
        set_locale(lang)
        request.state.locale = lang
        return await call_next(request)
