from pathlib import Path
import textwrap

import pytest

from roomy_cli.auth import ClientMetadataLoadError, OAuthClientMetadata, load_client_metadata


def test_defaults_without_override_file(tmp_path: Path) -> None:
    metadata = load_client_metadata(tmp_path)

    assert metadata == OAuthClientMetadata()
    assert metadata.redirect_uri == "http://127.0.0.1:8080/callback"
    assert metadata.client_id == (
        "http://localhost/?redirect_uri=http%3A%2F%2F127.0.0.1%3A8080%2Fcallback"
        "&scope=atproto%20transition%3Ageneric%20transition%3Achat.bsky"
    )


def test_override_file_is_applied(tmp_path: Path) -> None:
    (tmp_path / "oauth-client.yaml").write_text(
        textwrap.dedent(
            """
            client_name: Roomy Bot Runner
            redirect_uri: http://127.0.0.1:9999/callback
            scope: atproto   transition:generic
            """
        ).strip(),
        encoding="utf-8",
    )

    metadata = load_client_metadata(tmp_path)

    assert metadata.client_name == "Roomy Bot Runner"
    assert metadata.redirect_uri == "http://127.0.0.1:9999/callback"
    assert metadata.scope == "atproto transition:generic"
    assert metadata.handle_resolver == "https://resolver.roomy.chat"


def test_empty_file_uses_defaults(tmp_path: Path) -> None:
    (tmp_path / "oauth-client.yaml").write_text("", encoding="utf-8")

    assert load_client_metadata(tmp_path) == OAuthClientMetadata()


@pytest.mark.parametrize(
    "content",
    [
        "client_name: [unclosed",
        "- just\n- a list",
        "redirect_uri: https://example.com/callback",
        "scope: transition:generic",
    ],
)
def test_invalid_file_reports_error(tmp_path: Path, content: str) -> None:
    (tmp_path / "oauth-client.yaml").write_text(content, encoding="utf-8")

    with pytest.raises(ClientMetadataLoadError):
        load_client_metadata(tmp_path)
