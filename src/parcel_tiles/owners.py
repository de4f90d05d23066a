import re
from typing import Optional


_WHITESPACE_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SUFFIX_RE = re.compile(
    r"\s+(LLC|L\.?L\.?C\.?|INC\.?|INCORPORATED|TRUST|ESTATE|REVOCABLE|IRREVOCABLE"
    r"|FAMILY|FARMS?|PROPERTIES|CORP\.?|CORPORATION|LTD\.?|LIMITED|CO\.?)$"
)
_LAST_FIRST_RE = re.compile(r"^([^,]+),\s*(.+)$")


def _strip_suffixes(name: str) -> str:
    while True:
        stripped = _SUFFIX_RE.sub("", name).rstrip(" ,.;&")
        if stripped == name or not stripped:
            return name
        name = stripped


def normalize_owner_name(value: Optional[str]) -> Optional[str]:
    """Canonical owner key used to group parcels.

    "Smith, John Trust" and "JOHN SMITH" both map to "JOHN SMITH".
    """
    if value is None:
        return None
    name = _WHITESPACE_RE.sub(" ", str(value)).strip().upper()
    if not name:
        return None
    name = _strip_suffixes(name)
    name = _LAST_FIRST_RE.sub(r"\2 \1", name)
    name = _PUNCT_RE.sub("", name)
    name = _WHITESPACE_RE.sub(" ", name).strip()
    return name or None
