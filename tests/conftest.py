import os
import tempfile

# keep the module-level app and event sink out of the working tree
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="filedrop-"))
os.environ.setdefault("EVENTS_FILE", "")

import pytest
from fastapi.testclient import TestClient

from filedrop.api.main import create_app
from filedrop.core.config import Settings
from filedrop.core.exceptions import TransportError
from filedrop.services.gateway import build_gateway


class FakeTransport:
    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail
        self.closed = 0

    def write(self, event, payload):
        if self.fail:
            raise TransportError("broken pipe")
        self.events.append((event, payload))

    def close(self):
        self.closed += 1

    def named(self, event):
        return [p for (e, p) in self.events if e == event]


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def cfg(tmp_path):
    return Settings(
        upload_dir=str(tmp_path / "uploads"),
        heartbeat_interval=0.01,
        server_name="test-gateway",
    )


@pytest.fixture
def gateway(cfg):
    return build_gateway(cfg)


@pytest.fixture
def client(cfg):
    with TestClient(create_app(cfg)) as c:
        yield c
