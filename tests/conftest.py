from __future__ import annotations

import os
import tempfile
from pathlib import Path

TEST_DATABASE_URL = f"sqlite:///{Path(tempfile.gettempdir()) / 'neweyes_pytest.db'}"
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL

import pytest

from neweyes.config import settings
from neweyes.db import models  # noqa: F401
from neweyes.db import session as db_session
from neweyes.db.base import Base
from neweyes.main import app
from neweyes.modules.live.feed import reset_change_feed
from neweyes.modules.storage.service import LocalBlobStorage, get_storage


@pytest.fixture(autouse=True)
def _reset_db_and_defaults() -> None:
    if str(db_session.engine.url) != TEST_DATABASE_URL:
        db_session.rebind_engine(TEST_DATABASE_URL)
    settings.env = "dev"
    settings.timer_extend_seconds = 300
    settings.live_stream_keepalive_s = 15.0
    reset_change_feed()
    Base.metadata.drop_all(bind=db_session.engine)
    Base.metadata.create_all(bind=db_session.engine)
    yield
    app.dependency_overrides.clear()
    reset_change_feed()
    Base.metadata.drop_all(bind=db_session.engine)


@pytest.fixture
def blob_storage(tmp_path: Path) -> LocalBlobStorage:
    storage = LocalBlobStorage(tmp_path / "blobs", public_base_url="/storage")
    app.dependency_overrides[get_storage] = lambda: storage
    return storage
