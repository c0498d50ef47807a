"""
Replication of verdict records with peer installations.

A cycle with one peer runs discover, authenticate, push, pull. Each watermark
is committed as soon as its own phase succeeds and never before, so a failed
cycle can simply be run again: both sides treat re-sent records as no-ops.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .channel import ChannelSession, IRemoteChannel, SyncError, TransportError
from .records import IRecordStore
from .remotes import IRemoteRegistry
from .schema import RemoteDescriptor, SaveOutcome, Verdict, VerdictRecord, validate_key
from ..util.logging import logger

# One lock per peer name; syncs with different peers never wait on each other
_peer_locks: Dict[str, threading.Lock] = {}
_peer_locks_guard = threading.Lock()


def _lock_for(name: str) -> threading.Lock:
    with _peer_locks_guard:
        if name not in _peer_locks:
            _peer_locks[name] = threading.Lock()
        return _peer_locks[name]


class UnknownRemoteError(Exception):
    """Raised when syncing with a remote that is not registered."""
    pass


@dataclass
class SyncResult:
    remote: str
    sent: int = 0
    received: int = 0
    created: int = 0
    duplicates: int = 0
    last_sent: float = 0.0
    latest_seen: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Deadline:
    """Wall clock budget for one sync cycle."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self.expires_at = clock() + seconds

    def remaining(self, phase: str) -> float:
        left = self.expires_at - self.clock()
        if left <= 0:
            raise TransportError(f"sync cycle timed out before {phase}")
        return left


def record_from_wire(item: Any) -> VerdictRecord:
    """Validate one record received from a peer."""
    if not isinstance(item, dict):
        raise TransportError(f"peer sent a malformed record: {item!r}")
    try:
        address = item["address"]
        reviewer = item["reviewer"]
        validate_key(address, reviewer)
        return VerdictRecord(
            address=address,
            reviewer=reviewer,
            verdict=Verdict(item["verdict"]),
            recorded_at=float(item["recorded_at"])
        )
    except (KeyError, TypeError, ValueError) as e:
        raise TransportError(f"peer sent a malformed record: {e}")


class ReplicationEngine:
    """Exchanges verdict records between the local ledger and registered peers."""

    def __init__(self, store: IRecordStore, registry: IRemoteRegistry, channel: IRemoteChannel,
                 timeout: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.registry = registry
        self.channel = channel
        self.timeout = timeout
        self.clock = clock

    def sync(self, name: str) -> SyncResult:
        """
        Run one full cycle with the named peer.

        Raises a SyncError subclass when the cycle aborts. Watermarks that
        were committed before the failure stay committed.
        """
        with _lock_for(name):
            remote = self.registry.get(name)
            if remote is None:
                raise UnknownRemoteError(f"no remote named '{name}'")

            result = SyncResult(remote=name, last_sent=remote.last_sent, latest_seen=remote.latest_seen)
            deadline = Deadline(self.timeout, self.clock)

            start = time.perf_counter()
            try:
                endpoint = self.channel.discover(remote.endpoint_uri, timeout=deadline.remaining("discover"))
                session = self.channel.authenticate(endpoint, remote.auth_material,
                                                    timeout=deadline.remaining("authenticate"))
            except SyncError as e:
                logger.log_sync_phase("connect", name, start, time.perf_counter(), "failed", {"error": str(e)})
                raise
            logger.log_sync_phase("connect", name, start, time.perf_counter(), "success", {"endpoint": endpoint})

            self._push(remote, session, deadline, result)
            self._pull(remote, session, deadline, result)
            return result

    def sync_all(self) -> List[SyncResult]:
        """Sync every registered peer; a failing peer does not stop the others."""
        results = []
        for remote in self.registry.list():
            try:
                results.append(self.sync(remote.name))
            except SyncError as e:
                logger.warning(f"Sync with '{remote.name}' aborted: {e}")
                results.append(SyncResult(
                    remote=remote.name,
                    last_sent=remote.last_sent,
                    latest_seen=remote.latest_seen,
                    error=f"{type(e).__name__}: {e}"
                ))
        return results

    def _push(self, remote: RemoteDescriptor, session: ChannelSession, deadline: Deadline,
              result: SyncResult) -> None:
        start = time.perf_counter()
        # Records pulled from this peer are not echoed back to it
        to_send = self.store.get_records_after(remote.last_sent, exclude_origin=remote.name)
        if not to_send:
            logger.log_sync_phase("push", remote.name, start, time.perf_counter(), "success", {"sent": 0})
            return

        try:
            self.channel.request(session, "POST", "records",
                                 body=[record.to_wire() for record in to_send],
                                 timeout=deadline.remaining("push"))
        except SyncError as e:
            logger.log_sync_phase("push", remote.name, start, time.perf_counter(), "failed", {"error": str(e)})
            raise

        newest = max(record.recorded_at for record in to_send)
        updated = self.registry.update(remote.id, last_sent=newest)
        result.sent = len(to_send)
        result.last_sent = updated.last_sent if updated else newest
        logger.log_sync_phase("push", remote.name, start, time.perf_counter(), "success", {
            "sent": result.sent,
            "last_sent": result.last_sent
        })

    def _pull(self, remote: RemoteDescriptor, session: ChannelSession, deadline: Deadline,
              result: SyncResult) -> None:
        start = time.perf_counter()
        try:
            items = self.channel.request(session, "GET", "records",
                                         params={"since": repr(remote.latest_seen)},
                                         timeout=deadline.remaining("pull"))
            if not isinstance(items, list):
                raise TransportError("peer returned something other than a list of records")
            received = [record_from_wire(item) for item in items]
        except SyncError as e:
            logger.log_sync_phase("pull", remote.name, start, time.perf_counter(), "failed", {"error": str(e)})
            raise

        for record in received:
            outcome = self.store.save(record.address, record.reviewer, record.verdict, origin=remote.name)
            if outcome == SaveOutcome.CREATED:
                result.created += 1
            else:
                result.duplicates += 1
        result.received = len(received)

        # An empty pull leaves latest_seen alone so equal timestamps are not skipped later
        if received:
            newest = max(record.recorded_at for record in received)
            updated = self.registry.update(remote.id, latest_seen=newest)
            result.latest_seen = updated.latest_seen if updated else newest

        logger.log_sync_phase("pull", remote.name, start, time.perf_counter(), "success", {
            "received": result.received,
            "created": result.created,
            "latest_seen": result.latest_seen
        })
