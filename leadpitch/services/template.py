from __future__ import annotations

import html
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any

from ..errors import ValidationError

"""Template engine for pitch texts.

Placeholders are ``{{ column }}`` tokens. Matching against columns / row keys
is case-insensitive and tolerant of whitespace inside the braces.

fill_template() is a single left-to-right pass: substituted values are never
rescanned, so filling already-filled text with the same data is a no-op unless
a value itself contains ``{{...}}``.
"""

__all__ = [
    "PLACEHOLDER_PATTERN",
    "TemplateValidation",
    "extract_placeholders",
    "validate_template",
    "require_valid_template",
    "fill_template",
    "format_value",
    "render_html",
]

PLACEHOLDER_PATTERN = re.compile(r"\{\{(.*?)\}\}")


@dataclass(frozen=True)
class TemplateValidation:
    valid_placeholders: list[str]
    invalid_placeholders: list[str]

    @property
    def is_valid(self) -> bool:
        return not self.invalid_placeholders


def extract_placeholders(template: str) -> list[str]:
    """Return placeholder names in first-seen order, trimmed, duplicates collapsed.

    >>> extract_placeholders("Hi {{ Name }}, {{Name}} at {{Address}} {{ }}")
    ['Name', 'Address']
    """
    found: list[str] = []
    for match in PLACEHOLDER_PATTERN.finditer(template or ""):
        token = match.group(1).strip()
        if token and token not in found:
            found.append(token)
    return found


def validate_template(template: str, available_columns: Iterable[str]) -> TemplateValidation:
    """Split the template's placeholders into known / unknown columns."""
    known = {c.lower() for c in available_columns}
    valid: list[str] = []
    invalid: list[str] = []
    for name in extract_placeholders(template):
        if name.lower() in known:
            valid.append(name)
        else:
            invalid.append(name)
    return TemplateValidation(valid_placeholders=valid, invalid_placeholders=invalid)


def require_valid_template(template: str, available_columns: Iterable[str]) -> TemplateValidation:
    """validate_template() that raises ValidationError on unknown placeholders."""
    result = validate_template(template, available_columns)
    if not result.is_valid:
        names = ", ".join(f"{{{{{n}}}}}" for n in result.invalid_placeholders)
        raise ValidationError(f"template references unknown columns: {names}")
    return result


def format_value(value: Any) -> str:
    """Render one cell for substitution. None and "" render as empty text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def fill_template(template: str, row: Mapping[str, Any]) -> str:
    """Substitute every ``{{name}}`` with the matching row value.

    Placeholders whose name is not a key of ``row`` stay as literal text.
    """
    lowered: dict[str, Any] = {}
    for key, value in row.items():
        # 大文字小文字違いで衝突した場合は先勝ち
        lowered.setdefault(str(key).strip().lower(), value)

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1).strip().lower()
        if key not in lowered:
            return match.group(0)
        return format_value(lowered[key])

    return PLACEHOLDER_PATTERN.sub(_replace, template or "")


def render_html(text: str) -> str:
    """Convert a plain-text pitch into a minimal HTML email body.

    Blank lines separate paragraphs, single newlines become <br>.
    """
    escaped = html.escape(text or "", quote=True)
    paragraphs = [
        "<p>{}</p>".format(p.replace("\n", "<br>")) for p in escaped.split("\n\n")
    ]
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        "  <head>\n"
        '    <meta charset="utf-8">\n'
        "    <style>\n"
        "      body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;"
        " line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }\n"
        "      p { margin-bottom: 1em; }\n"
        "    </style>\n"
        "  </head>\n"
        "  <body>\n"
        + "\n".join(paragraphs)
        + "\n  </body>\n"
        "</html>\n"
    )
