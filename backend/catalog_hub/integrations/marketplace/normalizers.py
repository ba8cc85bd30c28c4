"""
Pure value coercions shared by the marketplace adapters.
Empty string, None and missing are all "absent" -> None, never zero.
"""
from __future__ import annotations
from typing import Any, Iterable, List, Optional
from decimal import Decimal, InvalidOperation

from catalog_hub.integrations.marketplace.errors import MarketplacePayloadError


def clean_str(val: Any) -> Optional[str]:
    if val is None:
        return None
    s = str(val).strip()
    return s or None


def is_blank(val: Any) -> bool:
    if val is None:
        return True
    if isinstance(val, str):
        return not val.strip()
    if isinstance(val, (list, tuple, dict, set)):
        return len(val) == 0
    return False


def to_decimal(val: Any, q: str = "0.01") -> Optional[Decimal]:
    if val is None or isinstance(val, bool):
        return None
    s = str(val).strip().replace(",", ".")
    if not s:
        return None
    try:
        d = Decimal(s)
        return d.quantize(Decimal(q))
    except (InvalidOperation, ValueError, TypeError):
        return None


def to_float(val: Any, ndigits: Optional[int] = None) -> Optional[float]:
    if val is None or isinstance(val, bool):
        return None
    s = str(val).strip()
    if not s:
        return None
    try:
        f = float(s)
        if ndigits is not None:
            f = round(f, ndigits)
        return f
    except (ValueError, TypeError):
        return None


def to_int(val: Any) -> Optional[int]:
    f = to_float(val)
    return int(f) if f is not None else None


def image_urls(raw: Any) -> List[str]:
    """
    Accepts a list of strings or of {"url": ...} / {"file_name": ...} dicts (or a single one).
    Returns the non-empty urls in order, without duplicates.
    """
    if raw is None:
        return []
    if isinstance(raw, (str, dict)):
        raw = [raw]
    if not isinstance(raw, Iterable):
        return []

    out: List[str] = []
    for it in raw:
        url: Any = it
        if isinstance(it, dict):
            url = it.get("url") or it.get("file_name") or it.get("link")
        url = clean_str(url) if isinstance(url, str) else None
        if url and url not in out:
            out.append(url)
    return out


def dig(payload: Any, *path: str) -> Any:
    """payload["a"]["b"]... ; None as soon as a level is missing or not a dict."""
    cur = payload
    for key in path:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def dict_list(value: Any, label: str) -> List[dict]:
    """
    Accept a list of dicts (non-dict entries dropped) or None (-> []).
    Anything else is a payload shape error.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise MarketplacePayloadError(f"{label} is not a list: {type(value).__name__}")
    return [x for x in value if isinstance(x, dict)]


def first_list(payload: Any, keys: Iterable[str], label: str) -> List[dict]:
    """First of the preferred keys holding a list, searched at top level and under "result"."""
    if isinstance(payload, list):
        return dict_list(payload, label)
    for scope in (payload, dig(payload, "result")):
        if isinstance(scope, list):
            return dict_list(scope, label)
        if not isinstance(scope, dict):
            continue
        for key in keys:
            if isinstance(scope.get(key), list):
                return dict_list(scope[key], f"{label}.{key}")
    return []
