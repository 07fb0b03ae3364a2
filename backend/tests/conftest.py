"""
Pytest fixtures for localpos tests.

Each test gets its own storage/export directories, so "restarting" the
process is just building a second app over the same directories.
"""

import pytest

from localpos import create_app
from localpos.models import User
from localpos.services import session_service, store_service
from localpos.extensions import db


ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin123"


@pytest.fixture(scope='function')
def app_config(tmp_path):
    return {
        'TESTING': True,
        'AUTOSAVE_ENABLED': False,
        'BCRYPT_ROUNDS': 4,
        'LOCALPOS_STORAGE_DIR': str(tmp_path / "storage"),
        'LOCALPOS_EXPORT_DIR': str(tmp_path / "exports"),
    }


@pytest.fixture(scope='function')
def make_app(app_config):
    """Build an app over this test's directories (call again to 'restart')."""
    apps = []

    def _make(**overrides):
        app = create_app({**app_config, **overrides})
        apps.append(app)
        return app

    yield _make

    for app in apps:
        app.extensions[store_service.EXTENSION_KEY].stop_autosave()


@pytest.fixture(scope='function')
def app(make_app):
    """Application with a pushed app context."""
    app = make_app()
    with app.app_context():
        yield app


@pytest.fixture(scope='function')
def admin_session(app):
    """Signed in as the bootstrap admin."""
    assert session_service.login(ADMIN_USERNAME, ADMIN_PASSWORD)
    return session_service.current_user()


@pytest.fixture(scope='function')
def bob(admin_session):
    """A regular user created by the admin."""
    assert session_service.create_user("bob", "pw1", role="user")
    return db.session.query(User).filter_by(username="bob").one()


def dump_store() -> dict:
    """Every table's rows, for before/after comparisons."""
    tables = [
        row["name"]
        for row in store_service.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
    ]
    return {
        table: store_service.query(f'SELECT * FROM "{table}" ORDER BY rowid')
        for table in tables
    }


@pytest.fixture(scope='function')
def store_dump():
    return dump_store
