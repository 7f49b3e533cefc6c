# log4shell_scanner/scanner.py
import time
import logging
from pathlib import Path
from typing import Iterable, Optional
from .java_analyser import is_scan_target, scan_archive_file
from .models import RunContext
from .patcher import fix_pending
from .reporting import ScanReporter
from .walker import walk_files

logger = logging.getLogger(__name__)


def scan(path, fix: bool = False, trace: bool = False,
         reporter: Optional[ScanReporter] = None,
         exclude_paths: Iterable[str] = ()) -> RunContext:
    """
    Scans every Java archive under path and, when fix is set, patches the
    vulnerable ones once the whole tree has been scanned.
    Returns the run context holding counters, the pending set and the reporter.
    """
    context = RunContext(reporter=reporter or ScanReporter(), fix=fix, trace=trace)
    if trace:
        logging.getLogger(__package__).setLevel(logging.DEBUG)
    begin = time.monotonic()
    try:
        for file_path in walk_files(Path(path), context, exclude_paths):
            if is_scan_target(file_path.name):
                scan_archive_file(file_path, context)
            else:
                logger.debug(f"Skipping file: {file_path}")

        if fix:
            if context.pending_patches:
                logger.info(f"Patching {len(context.pending_patches)} vulnerable files")
            fix_pending(context)
    finally:
        context.reporter.summary(context, time.monotonic() - begin)
    return context
