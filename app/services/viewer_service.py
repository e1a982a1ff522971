"""Viewer page rendering with embedded configuration.

The page template is plain HTML with a single marker comment. The marker is
replaced by an inline script assigning the slideshow settings to
``window.IMMICH_CONFIG``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from app.core.errors import ViewerTemplateError
from app.schemas.viewer import ViewerConfig

logger = logging.getLogger(__name__)

CONFIG_MARKER = "<!-- CONFIG_INJECTION -->"
DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parents[1] / "templates" / "index.html"


def serialize_config(config: ViewerConfig) -> str:
    """Serialize the config as JSON safe to embed inside a <script> element.

    Every ``<`` becomes ``\\u003c`` so no value (e.g. an album id containing
    ``</script>``) can terminate the script element early. The escape is
    still valid JSON and decodes back to the original string.
    """
    payload = json.dumps(config.model_dump(by_alias=True))
    return payload.replace("<", "\\u003c")


def render_viewer(template: str, config: ViewerConfig) -> str:
    """Insert the config script at the marker position of the template."""
    script = f"<script>window.IMMICH_CONFIG = {serialize_config(config)};</script>"
    if CONFIG_MARKER not in template:
        logger.warning("viewer.marker_missing", extra={"marker": CONFIG_MARKER})
    return template.replace(CONFIG_MARKER, script, 1)


class ViewerService:
    """Loads the page template and renders it with the current settings."""

    def __init__(self, config: ViewerConfig, template_path: Path | None = None) -> None:
        self.config = config
        self.template_path = template_path or DEFAULT_TEMPLATE_PATH

    def load_template(self) -> str:
        """Read the template from disk.

        Raises:
            ViewerTemplateError: If the file is missing or unreadable.
        """
        try:
            return self.template_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.error(
                "viewer.template_unavailable",
                extra={
                    "template_path": str(self.template_path),
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            raise ViewerTemplateError(
                code="viewer_template_unavailable",
                message="Could not load viewer template.",
            ) from exc

    def render(self) -> str:
        return render_viewer(self.load_template(), self.config)
