# expressions.py
from __future__ import annotations

import re
from typing import Any, Mapping

# ${{ matrix.os }}, ${{ secrets.TOKEN }}, ${{ env.HOME }}, ${{ event.branch }}
_EXPR = re.compile(r"\$\{\{\s*([A-Za-z_][\w-]*)\.([A-Za-z_][\w-]*)\s*\}\}")


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def interpolate(text: str, contexts: Mapping[str, Mapping[str, Any]]) -> str:
    """
    Substitute `${{ ctx.key }}` references.

    Unknown contexts or keys render as "" (same as a missing value).
    """
    if "${{" not in text:
        return text

    def sub(m: re.Match) -> str:
        ctx = contexts.get(m.group(1)) or {}
        return _render(ctx.get(m.group(2)))

    return _EXPR.sub(sub, text)


def interpolate_map(values: Mapping[str, Any], contexts: Mapping[str, Mapping[str, Any]]) -> dict[str, str]:
    return {k: interpolate(_render(v), contexts) for k, v in values.items()}
