"""OAuth client metadata loading."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import OAuthClientMetadata

CLIENT_METADATA_FILE_NAME = "oauth-client.yaml"


class ClientMetadataLoadError(RuntimeError):
    """Raised when the client metadata override file cannot be parsed."""


def load_client_metadata(directory: Path) -> OAuthClientMetadata:
    """Return client metadata, applying ``oauth-client.yaml`` overrides when present.

    A missing or empty file yields the built-in defaults.
    """

    path = Path(directory) / CLIENT_METADATA_FILE_NAME
    if not path.is_file():
        return OAuthClientMetadata()

    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ClientMetadataLoadError(f"Failed to parse YAML in {path}: {exc}") from exc

    if document is None:
        return OAuthClientMetadata()
    if not isinstance(document, dict):
        raise ClientMetadataLoadError(f"Client metadata in {path} must be a mapping")

    try:
        return OAuthClientMetadata.model_validate(document)
    except ValidationError as exc:
        raise ClientMetadataLoadError(f"Client metadata validation error in {path}: {exc}") from exc


__all__ = ["CLIENT_METADATA_FILE_NAME", "ClientMetadataLoadError", "load_client_metadata"]
