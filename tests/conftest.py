from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Optional, Union

import pytest

from ftprecon.errors import TransportError
from ftprecon.existence import RetryPolicy
from ftprecon.listing import EntryKind
from ftprecon.session import RemoteSession

SERVER = "ftp.example.com"

Answer = Union[EntryKind, None, TransportError]


def _key(path: str) -> str:
    return path.rstrip("/") or "/"


def _parent(key: str) -> str:
    return key.rpartition("/")[0]


class FakeTransport:
    """In-memory remote tree that speaks Unix (or DOS) listings.

    ``script`` holds canned ``exists`` answers consumed before the real tree
    is consulted; a ``TransportError`` in it is raised.
    """

    def __init__(self, root: str = "pub", *, windows: bool = False):
        self.server = SERVER
        self.root = _key(root)
        self.windows = windows
        self.dirs: set[str] = {self.root}
        self.files: dict[str, bytes] = {}
        self.mtimes: dict[str, datetime] = {}
        self.clock_skew = timedelta(0)
        self.script: deque[Answer] = deque()
        self.calls: list[tuple[str, str]] = []
        self.hidden_names: set[str] = set()
        self.extra_lines: dict[str, list[str]] = {}
        self.ghost_dirs: set[str] = set()
        self.failing: dict[tuple[str, str], str] = {}
        self.connected = False

    # helpers for tests

    def add_dir(self, path: str) -> None:
        key = _key(path)
        self.dirs.add(key)
        self.mtimes[key] = self._now()

    def add_file(self, path: str, data: bytes = b"data", mtime: Optional[datetime] = None) -> None:
        key = _key(path)
        self.files[key] = data
        self.mtimes[key] = mtime or self._now()

    def ops(self, *names: str) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] in names]

    def _now(self) -> datetime:
        return datetime.now() + self.clock_skew

    def _check(self, operation: str, path: str) -> None:
        self.calls.append((operation, path))
        message = self.failing.get((operation, _key(path)))
        if message:
            raise TransportError(operation, path, message)

    # RemoteTransport

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def exists(self, path: str) -> Optional[EntryKind]:
        self._check("exists", path)
        if self.script:
            answer = self.script.popleft()
            if isinstance(answer, TransportError):
                raise answer
            return answer
        key = _key(path)
        if key in self.dirs:
            return EntryKind.DIRECTORY
        if key in self.files:
            return EntryKind.FILE
        return None

    def _line(self, name: str, key: str, is_dir: bool) -> str:
        ts = self.mtimes.get(key, self._now())
        if self.windows:
            middle = "<DIR>" if is_dir else str(len(self.files[key]))
            return f"{ts:%m-%d-%y  %I:%M%p}       {middle:<14} {name}"
        perms = "drwxr-xr-x" if is_dir else "-rw-r--r--"
        size = 4096 if is_dir else len(self.files[key])
        return f"{perms}   1 user     group    {size:>8} {ts:%b %d %H:%M} {name}"

    def list_directory(self, path: str) -> str:
        self._check("list", path)
        key = _key(path)
        if key not in self.dirs:
            raise TransportError("list", path, "550 No such file or directory")
        lines = []
        for d in sorted(self.dirs):
            if _parent(d) == key and d != key:
                name = d.rpartition("/")[2]
                if name not in self.hidden_names:
                    lines.append(self._line(name, d, True))
        for f in self.files:
            if _parent(f) == key:
                name = f.rpartition("/")[2]
                if name not in self.hidden_names:
                    lines.append(self._line(name, f, False))
        lines.extend(self.extra_lines.get(key, []))
        return "\n".join(lines)

    def put_file(self, local_path: str, path: str) -> None:
        self._check("put", path)
        key = _key(path)
        if _parent(key) not in self.dirs:
            raise TransportError("put", path, "553 Could not create file")
        with open(local_path, "rb") as f:
            self.add_file(key, f.read())

    def make_directory(self, path: str) -> None:
        self._check("mkdir", path)
        key = _key(path)
        if _parent(key) not in self.dirs:
            raise TransportError("mkdir", path, "550 Parent does not exist")
        if key in self.ghost_dirs:
            return
        self.add_dir(key)

    def remove_file(self, path: str) -> None:
        self._check("remove", path)
        key = _key(path)
        if key not in self.files:
            raise TransportError("remove", path, "550 No such file")
        del self.files[key]

    def remove_directory(self, path: str) -> None:
        self._check("rmdir", path)
        key = _key(path)
        if any(_parent(p) == key for p in list(self.dirs) + list(self.files)):
            raise TransportError("rmdir", path, "550 Directory not empty")
        self.dirs.discard(key)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def session(transport: FakeTransport, sleeps: list[float]) -> RemoteSession:
    s = RemoteSession(transport, "pub", policy=RetryPolicy(), sleep=sleeps.append)
    s.connect()
    transport.calls.clear()
    return s
