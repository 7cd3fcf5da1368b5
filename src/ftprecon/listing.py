"""Parsing of remote directory listings.

Two formats are understood, one entry per line::

    drwxrwxr-x   3 rcole    rcole        4096 Aug 25 21:46 LrFlashGalleries
    02-12-10  04:13AM       <DIR>          1980s

Timestamps are kept exactly as the server reports them, together with the
clock offset that has to be subtracted before they can be compared with local
times.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .constants import DEFAULT_FUTURE_GRACE_S, DIR_MARKER, MONTHS
from .errors import CalibrationError, ListingParseError

DEFAULT_FUTURE_GRACE = timedelta(seconds=DEFAULT_FUTURE_GRACE_S)


class EntryKind(enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True, slots=True)
class DirectoryEntry:
    kind: EntryKind
    name: str
    timestamp: datetime
    size: Optional[int] = None
    clock_offset: Optional[timedelta] = None

    @property
    def is_dir(self) -> bool:
        return self.kind is EntryKind.DIRECTORY

    @property
    def normalized_timestamp(self) -> datetime:
        """Remote timestamp expressed on the local clock."""
        if self.clock_offset is None:
            raise CalibrationError(f"remote clock not calibrated; cannot normalize timestamp of {self.name!r}")
        return self.timestamp - self.clock_offset


def _to_int(token: str) -> Optional[int]:
    try:
        return int(token)
    except ValueError:
        return None


def _is_windows_line(fields: list[str]) -> bool:
    if len(fields) != 4 or fields[0][:1] in ("d", "-"):
        return False
    return fields[2] == DIR_MARKER or fields[2].isdigit()


def _parse_windows(line: str, fields: list[str]) -> tuple[EntryKind, datetime, str, Optional[int]]:
    date_str, time_str, type_str, name = fields
    stamp = f"{date_str} {time_str.upper()}"
    for fmt in ("%m-%d-%y %I:%M%p", "%m-%d-%Y %I:%M%p"):
        try:
            ts = datetime.strptime(stamp, fmt)
            break
        except ValueError:
            continue
    else:
        raise ListingParseError(line, f"bad date/time {stamp!r}")

    if type_str == DIR_MARKER:
        return EntryKind.DIRECTORY, ts, name, None
    return EntryKind.FILE, ts, name, _to_int(type_str)


def _parse_unix(
    line: str,
    now: datetime,
    future_grace: timedelta,
) -> tuple[EntryKind, datetime, str, Optional[int]]:
    fields = line.split(None, 8)
    if len(fields) < 9:
        raise ListingParseError(line, f"expected 9 fields, got {len(fields)}")

    perms, _, _, _, size_str, month_str, day_str, year_or_time, name = fields
    if perms[0] == "d":
        kind = EntryKind.DIRECTORY
    elif perms[0] == "-":
        kind = EntryKind.FILE
    else:
        raise ListingParseError(line, f"unknown entry type {perms[0]!r}")

    month = MONTHS.get(month_str.capitalize())
    if month is None:
        raise ListingParseError(line, f"unknown month {month_str!r}")
    day = _to_int(day_str)
    if day is None:
        raise ListingParseError(line, f"bad day {day_str!r}")

    try:
        if ":" in year_or_time:
            # Recent entries omit the year; assume this year unless that lands
            # in the future, in which case the entry is from last year.
            hour_str, _, minute_str = year_or_time.partition(":")
            hour, minute = int(hour_str), int(minute_str)
            ts = datetime(now.year, month, day, hour, minute)
            if ts - now > future_grace:
                ts = datetime(now.year - 1, month, day, hour, minute)
        else:
            ts = datetime(int(year_or_time), month, day)
    except ValueError as e:
        raise ListingParseError(line, f"bad date: {e}") from e

    size = None if kind is EntryKind.DIRECTORY else _to_int(size_str)
    return kind, ts, name, size


def parse_entry(
    line: str,
    *,
    clock_offset: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    future_grace: timedelta = DEFAULT_FUTURE_GRACE,
) -> DirectoryEntry:
    """Parse one non-blank listing line.

    Raises ``ListingParseError`` for anything that cannot be classified as a
    file or a directory.
    """
    line = line.rstrip("\r\n")
    fields = line.split(None, 3)
    if not fields:
        raise ListingParseError(line, "blank line")

    if _is_windows_line(fields):
        kind, ts, name, size = _parse_windows(line, fields)
    else:
        kind, ts, name, size = _parse_unix(line, now or datetime.now(), future_grace)

    return DirectoryEntry(kind=kind, name=name, timestamp=ts, size=size, clock_offset=clock_offset)


@dataclass(slots=True)
class DirectoryListing:
    directories: list[DirectoryEntry] = field(default_factory=list)
    files: list[DirectoryEntry] = field(default_factory=list)
    errors: list[ListingParseError] = field(default_factory=list)

    @property
    def entries(self) -> list[DirectoryEntry]:
        return self.directories + self.files

    @property
    def complete(self) -> bool:
        return not self.errors

    def find(self, name: str) -> Optional[DirectoryEntry]:
        """Exact name match first, then a case-insensitive one.

        Only read-only comparisons (``is_file_same``) use this; transport
        existence checks match names exactly.
        """
        entries = self.entries
        for entry in entries:
            if entry.name == name:
                return entry
        folded = name.casefold()
        for entry in entries:
            if entry.name.casefold() == folded:
                return entry
        return None


def parse_listing(
    text: str,
    *,
    clock_offset: Optional[timedelta] = None,
    now: Optional[datetime] = None,
    future_grace: timedelta = DEFAULT_FUTURE_GRACE,
    include_hidden: bool = False,
) -> DirectoryListing:
    """Parse a whole listing. Bad lines are collected, not fatal.

    ``.`` and ``..`` are always dropped; other dot-names only unless
    ``include_hidden`` is set.
    """
    listing = DirectoryListing()
    now = now or datetime.now()
    for line in text.splitlines():
        if not line.strip() or line.startswith("total "):
            continue
        try:
            entry = parse_entry(line, clock_offset=clock_offset, now=now, future_grace=future_grace)
        except ListingParseError as e:
            listing.errors.append(e)
            continue

        if entry.name in (".", "..") or (entry.name.startswith(".") and not include_hidden):
            continue
        if entry.is_dir:
            listing.directories.append(entry)
        else:
            listing.files.append(entry)
    return listing
