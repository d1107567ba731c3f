"""Jinja2 rendering of confirmation e-mail bodies."""

from __future__ import annotations

from typing import Any

from jinja2 import Environment, PackageLoader, select_autoescape

CONFIRM_HTML_TEMPLATE = "confirm_email.html.j2"
CONFIRM_TEXT_TEMPLATE = "confirm_email.txt.j2"


class EmailRenderer:
    """Renders the HTML and plain-text variants of a packaged template."""

    def __init__(self, environment: Environment | None = None) -> None:
        self._env = environment or Environment(
            loader=PackageLoader("confirm_service", "templates"),
            autoescape=select_autoescape(enabled_extensions=("html.j2",), default=False),
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render(self, html_template: str, text_template: str, **context: Any) -> tuple[str, str]:
        html = self._env.get_template(html_template).render(**context)
        text = self._env.get_template(text_template).render(**context)
        return html, text

    def render_confirm(self, url: str) -> tuple[str, str]:
        return self.render(CONFIRM_HTML_TEMPLATE, CONFIRM_TEXT_TEMPLATE, url=url)
