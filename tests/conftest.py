"""Shared fixtures for sitepipe tests."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy.orm import Session, sessionmaker

from sitepipe.db import create_all_tables, get_engine, get_session_factory
from sitepipe.types import SourceRevision

SITE_BUILDSPEC = """\
version: 0.2
env:
  variables:
    SITE_ENV: test
phases:
  install:
    commands:
      - echo "installing $SITEPIPE_REVISION"
  build:
    commands:
      - mkdir -p public
      - cp -R site/. public/
artifacts:
  base-directory: public
"""

SITE_FILES = {
    "index.html": "<html><body>Home</body></html>\n",
    "404.html": "<html><body>Not found</body></html>\n",
    "assets/app.js": "console.log('app');\n",
}


def make_revision(
    revision_id: str = "abc123", branch: str = "master"
) -> SourceRevision:
    """Create a revision with a fixed timestamp."""
    return SourceRevision(
        revision_id=revision_id,
        branch=branch,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def write_site_tree(root: Path, files: dict[str, str] | None = None) -> Path:
    """Write a source tree whose build copies site/ into public/."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "buildspec.yml").write_text(SITE_BUILDSPEC)
    for rel, content in (files if files is not None else SITE_FILES).items():
        path = root / "site" / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def session_factory(tmp_path: Path) -> sessionmaker[Session]:
    """Session factory bound to a fresh SQLite database."""
    engine = get_engine(f"sqlite:///{tmp_path / 'sitepipe.db'}")
    create_all_tables(engine)
    yield get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def site_tree(tmp_path: Path) -> Path:
    """A source tree producing index.html, 404.html and assets/app.js."""
    return write_site_tree(tmp_path / "source")


@pytest.fixture
def site_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Point every sitepipe setting at tmp_path with a valid site."""
    data = tmp_path / "data"
    monkeypatch.setenv("SITEPIPE_DOMAIN_NAME", "example.com")
    monkeypatch.setenv(
        "SITEPIPE_CERTIFICATE_ARN",
        "arn:aws:acm:us-east-1:123456789012:certificate/abcd-1234",
    )
    monkeypatch.setenv("SITEPIPE_WORKSPACE_DIR", str(data / "work"))
    monkeypatch.setenv("SITEPIPE_ARTIFACTS_DIR", str(data / "artifacts"))
    monkeypatch.setenv("SITEPIPE_PUBLISH_DIR", str(data / "www"))
    monkeypatch.setenv("SITEPIPE_LOGS_DIR", str(data / "logs"))
    monkeypatch.setenv("SITEPIPE_DB_URL", f"sqlite:///{data / 'sitepipe.db'}")
    monkeypatch.setenv("SITEPIPE_PUBLISH_BACKOFF", "0")
    return data
