from __future__ import annotations


class FtpReconError(Exception):
    pass


class TransportError(FtpReconError):
    """A remote call failed (network, login, or a protocol-level rejection)."""

    def __init__(self, operation: str, path: str, message: str):
        super().__init__(f"{operation} failed for {path!r}: {message}")
        self.operation = operation
        self.path = path
        self.message = message


class ListingParseError(FtpReconError, ValueError):
    def __init__(self, line: str, reason: str):
        super().__init__(f"unparseable listing line ({reason}): {line!r}")
        self.line = line
        self.reason = reason


class CalibrationError(FtpReconError):
    pass


class SafetyViolation(FtpReconError):
    pass


class ReconciliationError(FtpReconError):
    pass


class OverwriteRefused(ReconciliationError):
    pass


class RemovalError(ReconciliationError):
    def __init__(self, path: str, message: str):
        super().__init__(f"unable to remove {path!r}: {message}")
        self.path = path


class OperationCancelled(FtpReconError):
    pass
