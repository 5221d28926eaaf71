"""Exceptions raised by bomsync."""


class BomSyncError(Exception):
    """Base class for bomsync errors."""


class DecodeError(BomSyncError, ValueError):
    """A source file could not be decoded (bad spreadsheet, undecodable bytes).

    The engine isolates this per file: the file is skipped and sibling files
    are still processed.
    """

    def __init__(self, file_name: str, reason: str):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Could not decode {file_name}: {reason}")
