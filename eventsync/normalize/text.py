"""Free-text normalisation used for identity comparisons."""
from __future__ import annotations

import re

_LEADING_ARTICLE = re.compile(r"^(?:the|a|an)\s+", re.IGNORECASE)


def normalize(text: str) -> str:
    """Casefold, trim, collapse whitespace and drop one leading article.

    ``"The  Blue Note "`` and ``"blue note"`` both become ``"blue note"``.
    """
    collapsed = " ".join(text.casefold().split())
    return _LEADING_ARTICLE.sub("", collapsed, count=1)
