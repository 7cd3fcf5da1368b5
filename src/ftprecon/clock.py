"""Remote clock calibration.

FTP servers stamp uploaded files with their own clock. If that clock is slow,
a freshly uploaded file already looks out of date; if it is fast, a changed
local file may never look newer than its remote copy. Uploading a small
marker file and reading back its remote timestamp gives the offset
(``remote - local``) to subtract from every timestamp parsed from that
server's listings.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Mapping, Optional

from . import paths
from .constants import MARKER_CONTENT, MARKER_FILENAME
from .errors import CalibrationError, FtpReconError
from .listing import parse_listing

if TYPE_CHECKING:
    from .session import RemoteSession

log = logging.getLogger(__name__)


class ClockRegistry:
    """Clock offsets per server host, owned by whoever owns the sessions.

    Offsets enter through the constructor (pre-known offsets from
    configuration), ``record`` (calibration) or ``degrade`` (explicit opt-in to
    a zero offset).
    """

    def __init__(self, preset: Optional[Mapping[str, timedelta]] = None):
        self._offsets: dict[str, timedelta] = dict(preset or {})
        self._degraded: set[str] = set()

    def get(self, server: str) -> Optional[timedelta]:
        return self._offsets.get(server)

    def is_calibrated(self, server: str) -> bool:
        return server in self._offsets and server not in self._degraded

    def is_degraded(self, server: str) -> bool:
        return server in self._degraded

    def record(self, server: str, offset: timedelta) -> None:
        self._offsets[server] = offset
        self._degraded.discard(server)

    def degrade(self, server: str) -> timedelta:
        log.warning(
            "proceeding with uncalibrated clock for %s; remote timestamps may be off by hours",
            server,
        )
        self._offsets[server] = timedelta(0)
        self._degraded.add(server)
        return timedelta(0)

    def forget(self, server: str) -> None:
        self._offsets.pop(server, None)
        self._degraded.discard(server)

    def offset_for(self, server: str, *, allow_degraded: bool = False) -> timedelta:
        offset = self._offsets.get(server)
        if offset is not None:
            return offset
        if allow_degraded:
            return self.degrade(server)
        raise CalibrationError(f"remote clock for {server} is not calibrated")


def _nearest_year(ts: datetime, reference: datetime) -> datetime:
    # The marker was just written; its year is the one closest to the reference.
    candidates = [ts]
    for year in (reference.year - 1, reference.year, reference.year + 1):
        try:
            candidates.append(ts.replace(year=year))
        except ValueError:
            continue
    return min(candidates, key=lambda c: abs(c - reference))


class ClockCalibrator:
    def __init__(self, session: "RemoteSession", now: Callable[[], datetime] = datetime.now):
        self.session = session
        self.now = now

    def calibrate(self, remote_dir: str, *, local_dir: Optional[str] = None) -> timedelta:
        """Measure and return the offset of the session's server clock.

        Raises ``CalibrationError`` when the marker cannot be uploaded or found
        again; the registry is not touched in that case.
        """
        remote_marker = paths.child(remote_dir, MARKER_FILENAME)
        with tempfile.TemporaryDirectory(prefix="ftprecon-") as tmp:
            local_marker = os.path.join(local_dir or tmp, MARKER_FILENAME)
            try:
                with open(local_marker, "w", encoding="utf-8") as f:
                    f.write(MARKER_CONTENT)
            except OSError as e:
                raise CalibrationError(f"cannot write local marker {local_marker!r} (directory must be writeable): {e}") from e

            try:
                return self._measure(local_marker, remote_dir, remote_marker)
            finally:
                self._cleanup(local_marker, remote_marker)

    def _measure(self, local_marker: str, remote_dir: str, remote_marker: str) -> timedelta:
        log.info("putting %s to %s for remote clock calibration", local_marker, remote_marker)
        try:
            self.session.put_file(local_marker, remote_marker, overwrite_ok=True)
        except FtpReconError as e:
            raise CalibrationError(f"remote clock uncalibrated: {e}") from e
        reference = self.now()

        try:
            text = self.session.raw_listing(remote_dir)
        except FtpReconError as e:
            raise CalibrationError(f"remote clock uncalibrated: bad response listing {remote_dir!r}: {e}") from e

        listing = parse_listing(text, now=reference, future_grace=self.session.future_grace)
        for entry in listing.files:
            if entry.name == MARKER_FILENAME:
                return _nearest_year(entry.timestamp, reference) - reference

        detail = f"; {len(listing.errors)} unparseable lines" if listing.errors else ""
        raise CalibrationError(
            f"remote clock uncalibrated: marker not found in listing of {remote_dir!r}{detail}"
        )

    def _cleanup(self, local_marker: str, remote_marker: str) -> None:
        try:
            self.session.transport.remove_file(self.session.file_path(remote_marker))
        except FtpReconError as e:
            log.warning("unable to remove remote calibration file %s: %s", remote_marker, e)
        try:
            os.remove(local_marker)
        except FileNotFoundError:
            pass
        except OSError as e:
            log.warning("unable to remove local calibration file %s: %s", local_marker, e)
