"""InsightStream: URL Template Rendering."""

from typing import Any, Mapping


def render(template: str, model: Mapping[str, Any]) -> str:
    """Fill ``{key}`` placeholders from ``model``.

    Placeholders whose key is not in ``model`` are left untouched so a
    template can be filled in stages. Values are inserted verbatim; the
    caller is responsible for URL-safe values.
    """
    for name, value in model.items():
        template = template.replace("{" + name + "}", str(value))
    return template
