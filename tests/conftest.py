"""
Shared fixtures: throwaway ledgers, deterministic clocks and an in-process
peer reachable through a loopback channel.
"""

import pytest

from viphash.core.channel import (
    AuthenticationError,
    ChannelSession,
    DiscoveryError,
    IRemoteChannel,
    TransportError
)
from viphash.core.config import Settings
from viphash.core.records import FileRecordStore, SqliteRecordStore
from viphash.core.remotes import SqliteRemoteRegistry

ADDRESS_A = "a" * 40
ADDRESS_B = "b" * 40
ADDRESS_C = "c" * 40


class StepClock:
    """Clock returning start, start + step, start + 2 * step, ..."""

    def __init__(self, start: float = 1.0, step: float = 1.0):
        self.now = start - step
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class ManualClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class LoopbackChannel(IRemoteChannel):
    """Channel that serves requests straight from a peer's record store."""

    def __init__(self, peer_store, token: str = "secret"):
        self.peer_store = peer_store
        self.token = token
        self.fail_on = set()
        self.calls = []
        self.on_authenticate = None

    def discover(self, uri, timeout=None):
        if "discover" in self.fail_on:
            raise DiscoveryError(f"Could not locate API at {uri}")
        return uri.rstrip("/") + "/api"

    def authenticate(self, endpoint, auth_material, timeout=None):
        if self.on_authenticate:
            self.on_authenticate()
        if (auth_material or {}).get("token") != self.token:
            raise AuthenticationError("rejected")
        return ChannelSession(endpoint=endpoint, headers={"Authorization": f"Bearer {self.token}"})

    def request(self, session, verb, path, body=None, params=None, timeout=None):
        self.calls.append((verb, path, body, params))
        if (verb, path) in self.fail_on:
            raise TransportError(f"{verb} {path} failed")

        if verb == "POST" and path == "records":
            created = 0
            for item in body:
                outcome = self.peer_store.save(item["address"], item["reviewer"], item["verdict"], origin="@api")
                created += outcome.value == "created"
            return {"received": len(body), "created": created, "duplicates": len(body) - created}

        if verb == "GET" and path == "records":
            since = float(params["since"])
            return [record.to_wire() for record in self.peer_store.get_records_after(since)]

        raise TransportError(f"unexpected request {verb} {path}")

    def posts(self):
        return [call for call in self.calls if call[0] == "POST"]


@pytest.fixture
def settings(tmp_path):
    return Settings(home=tmp_path / "ledger", api_tokens=["secret"])


@pytest.fixture
def sqlite_store(tmp_path):
    return SqliteRecordStore(tmp_path / "local.db", clock=StepClock())


@pytest.fixture
def registry(tmp_path):
    return SqliteRemoteRegistry(tmp_path / "local.db")


@pytest.fixture
def peer_store(tmp_path):
    return SqliteRecordStore(tmp_path / "peer.db", clock=StepClock(start=100.0))


@pytest.fixture(params=["sqlite", "file"])
def record_store_factory(request, tmp_path):
    """Build a record store of each backend with a given clock."""
    def factory(clock=None):
        kwargs = {"clock": clock} if clock else {}
        if request.param == "sqlite":
            return SqliteRecordStore(tmp_path / "records.db", **kwargs)
        return FileRecordStore(tmp_path / "records", **kwargs)
    return factory
