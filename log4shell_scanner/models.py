# log4shell_scanner/models.py
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
from packaging.version import Version


class ArchiveStatus(Enum):
    NOT_VULNERABLE = "not_vulnerable"
    VULNERABLE = "vulnerable"
    MITIGATED = "mitigated"


def combine_statuses(*statuses: ArchiveStatus) -> ArchiveStatus:
    """Vulnerable beats mitigated, mitigated beats not vulnerable."""
    if ArchiveStatus.VULNERABLE in statuses:
        return ArchiveStatus.VULNERABLE
    if ArchiveStatus.MITIGATED in statuses:
        return ArchiveStatus.MITIGATED
    return ArchiveStatus.NOT_VULNERABLE


@dataclass(frozen=True)
class ReleaseVersion:
    major: int
    minor: int
    patch: int = 0
    raw: Optional[str] = None # Version string exactly as written in pom.properties

    def as_version(self) -> Version:
        return Version(f"{self.major}.{self.minor}.{self.patch}")

    def __str__(self) -> str:
        return self.raw if self.raw is not None else f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class ScanRecord:
    path: str
    version: str
    mitigated: bool


class PatchState(Enum):
    BACKING_UP = "backing_up"
    TRUNCATING = "truncating"
    REWRITING = "rewriting"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass(frozen=True)
class PatchOutcome:
    path: str
    fixed: bool
    state: PatchState
    message: Optional[str] = None


@dataclass(frozen=True)
class ScanError:
    path: str
    message: str
    kind: str = "ScannerError"


@dataclass
class RunContext:
    """Everything one scan/fix run accumulates. Created per invocation."""
    reporter: "ScanReporter" # noqa: F821 - defined in reporting.py
    fix: bool = False
    trace: bool = False
    scanned_dirs: int = 0
    scanned_files: int = 0
    vulnerable_files: int = 0
    fixed_files: int = 0
    pending_patches: list[Path] = field(default_factory=list)

    def add_pending(self, path: Path) -> None:
        if path not in self.pending_patches:
            self.pending_patches.append(path)

    @property
    def unfixed_files(self) -> int:
        return len(self.pending_patches) - self.fixed_files
