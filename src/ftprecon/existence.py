"""Three-valued existence checks with bounded polling.

Remote listings have been seen to misreport for a few seconds after a file or
directory is created or removed. When a caller knows what the answer should
be, the oracle re-queries until the server agrees or the retry budget runs
out.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from . import paths
from .constants import DEFAULT_FUTURE_GRACE_S, DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_DELAY_S
from .errors import TransportError
from .listing import EntryKind
from .transport import RemoteTransport

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    attempts: int = DEFAULT_RETRY_ATTEMPTS
    delay_s: float = DEFAULT_RETRY_DELAY_S
    future_grace_s: float = DEFAULT_FUTURE_GRACE_S


class Existence(enum.Enum):
    PRESENT = "present"
    ABSENT = "absent"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True, slots=True)
class ExistenceResult:
    state: Existence
    kind: Optional[EntryKind] = None
    reason: Optional[str] = None
    retries: int = 0
    # Still present after waiting for it to disappear.
    persisting: bool = False

    @staticmethod
    def definite(found: bool, kind: Optional[EntryKind] = None) -> "ExistenceResult":
        if found:
            return ExistenceResult(Existence.PRESENT, kind=kind)
        return ExistenceResult(Existence.ABSENT)

    @staticmethod
    def indeterminate(reason: str) -> "ExistenceResult":
        return ExistenceResult(Existence.INDETERMINATE, reason=reason)

    @property
    def present(self) -> bool:
        return self.state is Existence.PRESENT

    @property
    def absent(self) -> bool:
        return self.state is Existence.ABSENT

    @property
    def uncertain(self) -> bool:
        return self.state is Existence.INDETERMINATE

    def matches(self, expected: bool) -> bool:
        return self.state is (Existence.PRESENT if expected else Existence.ABSENT)

    def __bool__(self) -> bool:
        raise TypeError("ExistenceResult is three-valued; test .present, .absent or .state explicitly")


class ExistenceOracle:
    def __init__(
        self,
        transport: RemoteTransport,
        root: str,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.root = root
        self.policy = policy
        self.sleep = sleep

    def remote_path(self, sub_path: str) -> str:
        if paths.is_root(sub_path):
            return paths.dir_path(self.root, "")
        return paths.file_path(self.root, sub_path)

    def query(self, sub_path: str) -> ExistenceResult:
        """One existence query; transport failures become indeterminate."""
        path = self.remote_path(sub_path)
        try:
            kind = self.transport.exists(path)
        except TransportError as e:
            return ExistenceResult.indeterminate(str(e))
        if kind is None:
            return ExistenceResult.definite(False)
        return ExistenceResult.definite(True, kind)

    def _pause(self, cancel: Optional[threading.Event]) -> bool:
        """Sleep between polls. Returns False when cancelled."""
        if cancel is None:
            self.sleep(self.policy.delay_s)
            return True
        return not cancel.wait(self.policy.delay_s)

    def exists(
        self,
        sub_path: str,
        expected: Optional[bool] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> ExistenceResult:
        result = self.query(sub_path)
        if expected is None or result.matches(expected):
            return result

        retries = 0
        while retries < self.policy.attempts:
            log.warning(
                "waiting for %r to %s (%s, retry %d/%d)",
                sub_path,
                "appear" if expected else "disappear",
                result.state.value,
                retries + 1,
                self.policy.attempts,
            )
            if not self._pause(cancel):
                return ExistenceResult(Existence.INDETERMINATE, reason="cancelled", retries=retries)
            retries += 1
            result = self.query(sub_path)
            if result.matches(expected):
                return ExistenceResult(result.state, kind=result.kind, retries=retries)

        if expected:
            reason = f"{sub_path!r} did not appear after {retries} retries"
            if result.reason:
                reason = f"{reason}: {result.reason}"
            return ExistenceResult(Existence.INDETERMINATE, reason=reason, retries=retries)

        if result.present:
            return ExistenceResult(
                Existence.PRESENT,
                kind=result.kind,
                reason=f"{sub_path!r} won't go away after {retries} retries",
                retries=retries,
                persisting=True,
            )
        return ExistenceResult(Existence.INDETERMINATE, reason=result.reason, retries=retries)
