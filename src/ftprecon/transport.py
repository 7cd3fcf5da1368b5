from __future__ import annotations

import ftplib
import logging
import threading
from typing import Any, Callable, Optional, Protocol

from .constants import DEFAULT_FTP_PORT, DEFAULT_TIMEOUT_S
from .errors import ListingParseError, TransportError
from .listing import EntryKind, parse_entry

log = logging.getLogger(__name__)

MISSING_REPLY_CODES = ("550", "450")


class RemoteTransport(Protocol):
    """The remote calls a session needs. Every call takes a full remote path.

    Failures raise ``TransportError``. Answers may lag behind reality for a
    few seconds after a mutating call.
    """

    @property
    def server(self) -> str: ...

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def exists(self, path: str) -> Optional[EntryKind]: ...

    def list_directory(self, path: str) -> str: ...

    def put_file(self, local_path: str, path: str) -> None: ...

    def make_directory(self, path: str) -> None: ...

    def remove_file(self, path: str) -> None: ...

    def remove_directory(self, path: str) -> None: ...


def is_missing(err: TransportError) -> bool:
    return err.message.startswith(MISSING_REPLY_CODES)


class FtpTransport:
    """``RemoteTransport`` over ``ftplib``.

    One control connection; calls are serialized with a lock and bounded by
    the socket timeout.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_FTP_PORT,
        username: str = "anonymous",
        password: str = "",
        *,
        passive: bool = True,
        tls: bool = False,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        ftp_factory: Optional[Callable[..., ftplib.FTP]] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.passive = passive
        self.tls = tls
        self.timeout_s = timeout_s
        self._factory = ftp_factory or (ftplib.FTP_TLS if tls else ftplib.FTP)
        self._ftp: Optional[ftplib.FTP] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Any) -> "FtpTransport":
        return cls(
            settings.server,
            settings.port,
            settings.username,
            settings.password,
            passive=settings.passive,
            tls=settings.tls,
            timeout_s=settings.timeout_s,
        )

    @property
    def server(self) -> str:
        return self.host

    @property
    def connected(self) -> bool:
        return self._ftp is not None

    def connect(self) -> None:
        with self._lock:
            ftp = self._factory(timeout=self.timeout_s)
            try:
                ftp.connect(self.host, self.port)
                ftp.login(self.username, self.password)
                if self.tls:
                    ftp.prot_p()  # type: ignore[attr-defined]
                ftp.set_pasv(self.passive)
            except ftplib.all_errors as e:
                ftp.close()
                raise TransportError("connect", f"{self.host}:{self.port}", str(e)) from e
            self._ftp = ftp
        log.debug("connected to %s:%d as %s", self.host, self.port, self.username)

    def disconnect(self) -> None:
        with self._lock:
            ftp, self._ftp = self._ftp, None
            if ftp is None:
                return
            try:
                ftp.quit()
            except ftplib.all_errors:
                ftp.close()
        log.debug("disconnected from %s", self.host)

    def _call(self, operation: str, path: str, command: str, *args: Any) -> Any:
        with self._lock:
            if self._ftp is None:
                raise TransportError(operation, path, "not connected")
            log.debug("%s %r", operation, path)
            try:
                return getattr(self._ftp, command)(*args)
            except ftplib.all_errors as e:
                raise TransportError(operation, path, str(e)) from e

    def list_directory(self, path: str) -> str:
        lines: list[str] = []
        self._call("list", path, "retrlines", f"LIST {path}".rstrip(), lines.append)
        return "\n".join(lines)

    def exists(self, path: str) -> Optional[EntryKind]:
        trimmed = path.rstrip("/")
        parent, _, leaf = trimmed.rpartition("/")
        if not leaf:
            try:
                self.list_directory(path)
            except TransportError as e:
                if is_missing(e):
                    return None
                raise
            return EntryKind.DIRECTORY

        parent_path = parent + "/" if parent else ("/" if trimmed.startswith("/") else "")
        try:
            text = self.list_directory(parent_path)
        except TransportError as e:
            if is_missing(e):
                return None
            raise

        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                entry = parse_entry(line)
            except ListingParseError:
                continue
            # Exact names only: mutating calls are sent with this same spelling.
            if entry.name == leaf:
                return entry.kind
        return None

    def put_file(self, local_path: str, path: str) -> None:
        try:
            f = open(local_path, "rb")
        except OSError as e:
            raise TransportError("put", path, f"cannot read local file {local_path!r}: {e}") from e
        with f:
            self._call("put", path, "storbinary", f"STOR {path}", f)

    def make_directory(self, path: str) -> None:
        self._call("mkdir", path, "mkd", path)

    def remove_file(self, path: str) -> None:
        self._call("remove", path, "delete", path)

    def remove_directory(self, path: str) -> None:
        self._call("rmdir", path, "rmd", path.rstrip("/") or path)
