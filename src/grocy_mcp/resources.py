"""Markdown documentation served as MCP resources under ``grocy-api://``."""

import logging
import re
from pathlib import Path
from typing import Optional

from mcp.types import ReadResourceResult, Resource, TextResourceContents

from .errors import invalid_params, resource_not_found

logger = logging.getLogger("grocy-mcp")

SCHEME = "grocy-api"
MIME_TYPE = "text/markdown"
DOCS_DIR = Path(__file__).parent / "resource_docs"

URI_PATTERN = re.compile(rf"^{SCHEME}://([a-z0-9-]+)/?$")

# name -> (title, description)
CATALOGUE = {
    "examples": ("Grocy API Usage Examples", "Detailed examples of using the Grocy tools"),
    "response-format": ("Response Format Documentation", "Documentation of the response format and structure"),
    "config": ("Configuration Documentation", "Documentation of all configuration options and how to use them"),
}


class ResourceCatalogue:
    """Fixed set of documentation resources backed by files in ``resource_docs/``."""

    def __init__(self, docs_dir: Optional[Path] = None):
        self.docs_dir = docs_dir or DOCS_DIR

    def list_resources(self) -> list[Resource]:
        return [
            Resource(uri=f"{SCHEME}://{name}", name=title, description=description, mimeType=MIME_TYPE)
            for name, (title, description) in CATALOGUE.items()
        ]

    def read_resource(self, uri: str) -> ReadResourceResult:
        """Return the markdown behind ``uri``.

        Raises:
            McpError: invalid-params for a malformed URI, resource-not-found
                for a name outside the catalogue.
        """
        match = URI_PATTERN.match(str(uri))
        if not match:
            raise invalid_params(f"Invalid resource URI format: {uri}")

        name = match.group(1)
        if name not in CATALOGUE:
            raise resource_not_found(f"Resource not found: {name}")

        path = self.docs_dir / f"{name}.md"
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read resource file {path}: {e}")
            raise resource_not_found(f"Resource not found: {name}") from e

        return ReadResourceResult(
            contents=[TextResourceContents(uri=f"{SCHEME}://{name}", mimeType=MIME_TYPE, text=text)]
        )
