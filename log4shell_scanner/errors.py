# log4shell_scanner/errors.py


class ScannerError(Exception):
    """Base class for every file-scoped failure raised by the scanner."""


class MalformedArchiveError(ScannerError):
    """The file looks like an archive by name but cannot be opened or iterated."""


class CorruptStreamError(ScannerError):
    """Raised by the forward-only reader; callers add the archive context."""


class ArchiveReadError(ScannerError):
    """A forward-only read of a nested archive hit corrupt or unsupported data."""

    def __init__(self, outer_path, entry_name: str, reason: str = ""):
        self.outer_path = str(outer_path)
        self.entry_name = entry_name
        self.reason = reason
        message = f"cannot scan nested jar {self.outer_path}, entry {entry_name}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PatchError(ScannerError):
    def __init__(self, path, message: str):
        self.path = str(path)
        super().__init__(message)


class BackupConflictError(PatchError):
    pass


class TruncateError(PatchError):
    pass


class RewriteError(PatchError):
    pass


class RollbackError(PatchError):
    pass
