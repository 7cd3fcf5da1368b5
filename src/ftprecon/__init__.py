"""FTP directory reconciliation (ftprecon)

Keeps a local tree and a remote FTP tree in step on servers that do not always
tell the truth straight away:
- listing parsing for Unix and Windows style servers
- clock offset calibration, so remote timestamps can be compared with local ones
- three-valued existence checks that wait out a lagging server
- tree creation/removal and uploads built on top of those checks
"""

from .clock import ClockCalibrator, ClockRegistry
from .config import FtpSettings, load_settings
from .errors import (
    CalibrationError,
    FtpReconError,
    ListingParseError,
    OperationCancelled,
    OverwriteRefused,
    ReconciliationError,
    RemovalError,
    SafetyViolation,
    TransportError,
)
from .existence import Existence, ExistenceOracle, ExistenceResult, RetryPolicy
from .listing import DirectoryEntry, DirectoryListing, EntryKind, parse_entry, parse_listing
from .session import RemoteSession, TreeReport
from .transport import FtpTransport, RemoteTransport

__all__ = [
    "CalibrationError",
    "ClockCalibrator",
    "ClockRegistry",
    "DirectoryEntry",
    "DirectoryListing",
    "EntryKind",
    "Existence",
    "ExistenceOracle",
    "ExistenceResult",
    "FtpReconError",
    "FtpSettings",
    "FtpTransport",
    "ListingParseError",
    "OperationCancelled",
    "OverwriteRefused",
    "ReconciliationError",
    "RemoteSession",
    "RemoteTransport",
    "RemovalError",
    "RetryPolicy",
    "SafetyViolation",
    "TransportError",
    "TreeReport",
    "load_settings",
    "parse_entry",
    "parse_listing",
]
