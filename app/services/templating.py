"""``${field}`` template substitution against a record's fields."""
import re
from typing import Mapping, Optional

PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def render_template(template: str, fields: Mapping[str, str]) -> str:
    """
    Replace each ``${name}`` with ``fields[name]``.

    Placeholders naming a field the record does not have stay in the output
    untouched.

    Args:
        template: Template string, e.g. ``"${id}-${tag}"``
        fields: Record fields

    Returns:
        Rendered string
    """

    def _substitute(match: re.Match) -> str:
        name = match.group(1)
        if name in fields:
            return fields[name]
        return match.group(0)

    return PLACEHOLDER.sub(_substitute, template)


def resolve_value(
    fields: Mapping[str, str],
    template: Optional[str] = None,
    column: Optional[str] = None,
) -> str:
    """Render ``template`` when given, otherwise read ``column`` directly."""
    if template:
        return render_template(template, fields)
    if column is None:
        return ""
    return fields.get(column, "")
