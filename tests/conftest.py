# tests/conftest.py
"""
Environment must be in place before anything imports styletransform.config:
settings and the SQLAlchemy engine are built at import time.
"""
import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="styletransform-tests-"))

os.environ["DB_URL"] = f"sqlite:///{(_TMP / 'test.db').as_posix()}"
os.environ["STYLETRANSFORM_STORAGE_DIR"] = str(_TMP / "storage")
os.environ["IDENTITY_VERIFY_URL"] = ""
os.environ["AUTH_ALLOW_DEV_TOKENS"] = "true"
os.environ["FREE_GENERATION_LIMIT"] = "3"
os.environ["PREMIUM_GENERATION_LIMIT"] = "10"
for key in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ[key] = ""

import pytest  # noqa: E402

from fakes import FakeClock  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock()
