from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from . import paths
from .clock import ClockCalibrator, ClockRegistry
from .errors import (
    CalibrationError,
    OperationCancelled,
    OverwriteRefused,
    ReconciliationError,
    RemovalError,
    SafetyViolation,
    TransportError,
)
from .existence import ExistenceOracle, ExistenceResult, RetryPolicy
from .listing import DirectoryListing, EntryKind, parse_listing
from .transport import FtpTransport, RemoteTransport, is_missing

log = logging.getLogger(__name__)


@dataclass(slots=True)
class TreeReport:
    files: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)

    @property
    def removed(self) -> int:
        return len(self.files) + len(self.directories)


class RemoteSession:
    """Reconciling operations on one remote server, relative to a fixed root.

    A session owns its transport and is not meant to be shared between
    threads; every transport call is handed the full remote path.
    """

    def __init__(
        self,
        transport: RemoteTransport,
        root: str = "",
        *,
        clocks: Optional[ClockRegistry] = None,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.root = root.replace("\\", "/")
        self.clocks = clocks if clocks is not None else ClockRegistry()
        self.policy = policy
        self.oracle = ExistenceOracle(transport, self.root, policy, sleep)
        self._listing_cache: dict[str, DirectoryListing] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        transport: Optional[RemoteTransport] = None,
        clocks: Optional[ClockRegistry] = None,
    ) -> "RemoteSession":
        return cls(
            transport or FtpTransport.from_settings(settings),
            settings.root,
            clocks=clocks or ClockRegistry(settings.preset_offsets()),
            policy=settings.retry,
        )

    @property
    def server(self) -> str:
        return self.transport.server

    @property
    def future_grace(self) -> timedelta:
        return timedelta(seconds=self.policy.future_grace_s)

    def dir_path(self, sub_path: str) -> str:
        return paths.dir_path(self.root, sub_path)

    def file_path(self, sub_path: str) -> str:
        return paths.file_path(self.root, sub_path)

    # -- connection

    def connect(self) -> None:
        """Connect and make sure the root exists as a directory."""
        self.transport.connect()
        result = self.oracle.query("")
        if result.present and result.kind is EntryKind.DIRECTORY:
            return
        self.transport.disconnect()
        reason = result.reason or f"root is {result.state.value}"
        raise TransportError("connect", self.dir_path(""), reason)

    def disconnect(self) -> None:
        self.transport.disconnect()
        self._listing_cache.clear()

    def __enter__(self) -> "RemoteSession":
        self.connect()
        return self

    def __exit__(self, *exc: object) -> None:
        self.disconnect()

    # -- existence

    def exists(
        self,
        sub_path: str,
        expected: Optional[bool] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ExistenceResult:
        return self.oracle.exists(paths.normalize(sub_path), expected, cancel=cancel)

    def _exists_as(self, kind: EntryKind, sub_path: str, expected: Optional[bool]) -> ExistenceResult:
        result = self.exists(sub_path, expected)
        if result.present and result.kind is not None and result.kind is not kind:
            raise ReconciliationError(
                f"{sub_path!r} should either not exist or be a {kind.value}, but it is a {result.kind.value}"
            )
        return result

    def exists_as_file(self, sub_path: str, expected: Optional[bool] = None) -> ExistenceResult:
        return self._exists_as(EntryKind.FILE, sub_path, expected)

    def exists_as_dir(self, sub_path: str, expected: Optional[bool] = None) -> ExistenceResult:
        return self._exists_as(EntryKind.DIRECTORY, sub_path, expected)

    # -- listings

    def raw_listing(self, sub_path: str) -> str:
        return self.transport.list_directory(self.dir_path(sub_path))

    def list_directory(self, sub_path: str, *, include_hidden: bool = False) -> DirectoryListing:
        """Parsed listing; entries carry the server's clock offset, or ``None``
        while the server is uncalibrated."""
        offset = self.clocks.get(self.server)
        # Year-less timestamps are judged against the server's idea of now.
        now = datetime.now() + (offset or timedelta(0))
        return parse_listing(
            self.raw_listing(sub_path),
            clock_offset=offset,
            now=now,
            future_grace=self.future_grace,
            include_hidden=include_hidden,
        )

    def _cached_listing(self, sub_dir: str) -> DirectoryListing:
        sub_dir = paths.normalize(sub_dir)
        listing = self._listing_cache.get(sub_dir)
        if listing is None:
            listing = self.list_directory(sub_dir)
            self._listing_cache[sub_dir] = listing
        return listing

    def _invalidate(self, sub_dir: str) -> None:
        self._listing_cache.pop(paths.normalize(sub_dir), None)

    def clear_listing_cache(self) -> None:
        self._listing_cache.clear()

    # -- directories

    def ensure_tree(self, sub_path: str) -> list[str]:
        """Create every missing directory down to ``sub_path``.

        Returns the sub-paths created, parent first. Directories created before
        a failure are left in place.
        """
        target = paths.normalize(sub_path)
        missing: list[str] = []
        current = target
        while current:
            result = self.exists(current)
            if result.present:
                if result.kind is EntryKind.FILE:
                    raise ReconciliationError(f"cannot create remote directory {target!r}: {current!r} is a file")
                log.debug("remote directory already exists: %s", current)
                break
            if result.uncertain:
                raise ReconciliationError(f"unable to create remote directory {target!r}: {result.reason}")
            log.debug("remote directory does not exist yet: %s", current)
            missing.append(current)
            current = paths.split(current)[0]

        created: list[str] = []
        for sub_dir in reversed(missing):
            self.transport.make_directory(self.file_path(sub_dir))
            self._invalidate(paths.split(sub_dir)[0])
            log.info("created remote directory %s", sub_dir)
            created.append(sub_dir)

        if created:
            confirm = self.exists(target, expected=True)
            if not confirm.present:
                raise ReconciliationError(
                    f"unable to confirm remote directory {target!r} after creating {len(created)}: {confirm.reason}"
                )
        return created

    make_dir = ensure_tree

    def _confirm_removed(self, sub_path: str) -> None:
        result = self.exists(sub_path, expected=False)
        if result.absent:
            self._invalidate(paths.split(sub_path)[0])
            return
        if result.persisting:
            raise RemovalError(sub_path, "still present after removal")
        raise RemovalError(sub_path, f"removal not confirmed: {result.reason}")

    def remove_file(self, sub_path: str) -> None:
        sub = paths.normalize(sub_path)
        try:
            self.transport.remove_file(self.file_path(sub))
        except TransportError as e:
            raise RemovalError(sub, str(e)) from e
        self._confirm_removed(sub)

    def remove_empty_dir(self, sub_path: str) -> None:
        sub = paths.normalize(sub_path)
        if not sub:
            raise SafetyViolation(f"refusing to remove root directory {self.root!r}")
        try:
            self.transport.remove_directory(self.file_path(sub))
        except TransportError as e:
            raise RemovalError(sub, str(e)) from e
        self._confirm_removed(sub)

    def remove_tree(self, sub_path: str, *, cancel: Optional[threading.Event] = None) -> TreeReport:
        """Remove a directory with everything below it.

        The root can never be removed. The first failure stops the removal and
        names the path that could not be removed.
        """
        sub = paths.normalize(sub_path)
        if not sub:
            raise SafetyViolation(f"refusing to remove root directory {self.root!r}")

        report = TreeReport()
        result = self.exists(sub)
        if result.absent:
            return report
        if result.present and result.kind is EntryKind.FILE:
            raise ReconciliationError(f"{sub!r} is a file, not a directory")
        if result.uncertain:
            log.warning("unable to ascertain if %s exists to be removed, trying anyway: %s", sub, result.reason)

        self._remove_tree(sub, report, cancel)
        return report

    def _remove_tree(self, sub: str, report: TreeReport, cancel: Optional[threading.Event]) -> None:
        _check_cancel(cancel, sub)
        log.debug("removing remote directory %s", sub)
        try:
            listing = self.list_directory(sub, include_hidden=True)
        except TransportError as e:
            raise RemovalError(sub, f"cannot list contents: {e}") from e
        if listing.errors:
            raise RemovalError(sub, f"{len(listing.errors)} unparseable listing lines, first: {listing.errors[0].line!r}")

        for entry in listing.files:
            _check_cancel(cancel, sub)
            path = paths.child(sub, entry.name)
            self.remove_file(path)
            log.info("remote file deleted: %s", path)
            report.files.append(path)

        for entry in listing.directories:
            self._remove_tree(paths.child(sub, entry.name), report, cancel)

        _check_cancel(cancel, sub)
        self.remove_empty_dir(sub)
        log.info("remote directory deleted: %s", sub)
        report.directories.append(sub)

    # -- files

    def put_file(self, local_path: str, sub_path: str, overwrite_ok: bool = False) -> None:
        """Upload ``local_path``.

        The existence checks only prepare the target (remove the old file,
        create parent directories); the upload is attempted whatever they
        report, and its own failure is what counts.
        """
        sub = paths.normalize(sub_path)
        parent, _ = paths.split(sub)
        target = self.file_path(sub)
        if not os.path.isfile(local_path):
            raise ReconciliationError(f"cannot put {local_path!r}: local file not found")

        result = self.exists(sub)
        if result.present:
            if result.kind is EntryKind.DIRECTORY:
                raise ReconciliationError(f"cannot put {local_path!r}: {sub!r} is a directory")
            if not overwrite_ok:
                raise OverwriteRefused(f"remote file {sub!r} already exists and overwrite is not allowed")
            log.debug("remote file %s already exists, removing for overwrite", sub)
            self.transport.remove_file(target)
            self._invalidate(parent)
            confirm = self.exists(sub, expected=False)
            if not confirm.absent:
                log.warning("remote file %s may not have been removed before upload: %s", sub, confirm.reason)
        else:
            if result.uncertain:
                log.warning("unable to ascertain whether %s exists, uploading anyway: %s", sub, result.reason)
            try:
                self.ensure_tree(parent)
            except (ReconciliationError, TransportError) as e:
                log.warning("unable to prepare remote directory %r for %s: %s", parent, sub, e)

        self.transport.put_file(local_path, target)
        self._invalidate(parent)
        log.debug("put %s -> %s", local_path, target)

    def is_file_same(self, local_path: str, sub_path: str) -> Optional[bool]:
        """Compare sizes only, against a cached listing of the parent directory.

        ``None`` when the listing carries no size for the file or the local
        file cannot be read.
        """
        try:
            local_size = os.path.getsize(local_path)
        except OSError as e:
            log.warning("local file not found: %s (%s)", local_path, e)
            return None

        parent, leaf = paths.split(sub_path)
        try:
            listing = self._cached_listing(parent)
        except TransportError as e:
            if is_missing(e):
                return False
            raise
        entry = listing.find(leaf)
        if entry is None or entry.is_dir:
            return False
        if entry.size is None:
            return None
        return local_size == entry.size

    def needs_upload(self, local_path: str, sub_path: str, *, allow_degraded: bool = False) -> bool:
        """True when the remote copy is missing, differs in size, or is older
        than the local file on the local clock."""
        offset = self.clocks.offset_for(self.server, allow_degraded=allow_degraded)
        try:
            mtime = os.path.getmtime(local_path)
        except OSError as e:
            raise ReconciliationError(f"cannot read local file {local_path!r}: {e}") from e
        same = self.is_file_same(local_path, sub_path)
        if same is False:
            return True

        parent, leaf = paths.split(sub_path)
        entry = self._cached_listing(parent).find(leaf)
        if entry is None:
            return True
        # Listings have minute resolution.
        local_mtime = datetime.fromtimestamp(mtime).replace(second=0, microsecond=0)
        return entry.timestamp - offset < local_mtime

    # -- clock

    def calibrate_clock(
        self,
        remote_dir: str = "",
        *,
        local_dir: Optional[str] = None,
        degrade_on_failure: bool = False,
        force: bool = False,
    ) -> timedelta:
        """Calibrate this server's clock once; later calls reuse the offset."""
        known = self.clocks.get(self.server)
        if known is not None and not force and not self.clocks.is_degraded(self.server):
            return known

        try:
            offset = ClockCalibrator(self).calibrate(remote_dir, local_dir=local_dir)
        except CalibrationError as e:
            if not degrade_on_failure:
                raise
            log.error("%s", e)
            return self.clocks.degrade(self.server)
        finally:
            self.clear_listing_cache()

        self.clocks.record(self.server, offset)
        log.info("remote clock calibrated, server: %s, offset: %s", self.server, offset)
        return offset


def _check_cancel(cancel: Optional[threading.Event], sub: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled(f"cancelled while removing {sub!r}")
