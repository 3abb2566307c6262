"""Shared fixtures for the sync tests."""
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from eventmap_sync.config import Config
from eventmap_sync.markdown_renderer import MarkdownRenderer, RenderOptions
from eventmap_sync.models import EventRecord

FIXED_NOW = datetime(2024, 6, 1, 3, 0, tzinfo=timezone.utc)

API_URL = "https://api.github.com"
CONTENTS_URL = f"{API_URL}/repos/kawaguti/ScrumFestMapViewer/contents/all-events.md"
TOKEN_URL = f"{API_URL}/app/installations/999/access_tokens"


@pytest.fixture(scope="session")
def rsa_key():
    """A throwaway RSA key for signing app JWTs."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key):
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture(scope="session")
def public_key_pem(rsa_key):
    return rsa_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def config(private_key_pem):
    return Config(
        github_app_id="12345",
        github_private_key=private_key_pem,
        github_installation_id="999",
        repository="kawaguti/ScrumFestMapViewer",
    )


@pytest.fixture
def renderer(clock):
    return MarkdownRenderer(RenderOptions(), clock=clock)


@pytest.fixture
def make_event():
    """Factory for events with sensible defaults."""
    counter = {"next": 1}

    def _make(name, date="2024-03-01", prefecture="東京都", **kwargs):
        event_id = kwargs.pop("id", counter["next"])
        counter["next"] += 1
        return EventRecord(id=event_id, name=name, prefecture=prefecture, date=date, **kwargs)

    return _make


ENV_VARS = (
    "GITHUB_APP_ID", "GITHUB_PRIVATE_KEY", "GITHUB_PRIVATE_KEY_PATH",
    "GITHUB_INSTALLATION_ID", "GITHUB_REPOSITORY", "GITHUB_OWNER", "GITHUB_REPO",
    "GITHUB_FILE_PATH", "GITHUB_BRANCH", "GITHUB_API_URL", "SYNC_COMMIT_MESSAGE",
    "DOCUMENT_TITLE", "DISPLAY_TIMEZONE", "HTTP_TIMEOUT", "SYNC_AUTHENTICATED_FETCH",
    "DEBUG", "DRY_RUN", "FORCE_SYNC",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Environment with none of the sync variables set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
