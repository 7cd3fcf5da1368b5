from __future__ import annotations

MARKER_FILENAME = "___tempFileForRemoteClockOffsetCalibration.txt"
MARKER_CONTENT = "This file should be deleted."

DIR_MARKER = "<DIR>"

DEFAULT_RETRY_ATTEMPTS = 10
DEFAULT_RETRY_DELAY_S = 1.0
DEFAULT_FUTURE_GRACE_S = 720  # 12 minutes

DEFAULT_FTP_PORT = 21
DEFAULT_TIMEOUT_S = 30.0

MONTHS = {
    "Jan": 1,
    "Feb": 2,
    "Mar": 3,
    "Apr": 4,
    "May": 5,
    "Jun": 6,
    "Jul": 7,
    "Aug": 8,
    "Sep": 9,
    "Oct": 10,
    "Nov": 11,
    "Dec": 12,
}
