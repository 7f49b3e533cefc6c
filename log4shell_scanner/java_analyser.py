# log4shell_scanner/java_analyser.py
import zlib
import zipfile
import logging
from pathlib import Path
from typing import BinaryIO
from .errors import ArchiveReadError, CorruptStreamError, MalformedArchiveError
from .models import ArchiveStatus, RunContext, ScanError, ScanRecord, combine_statuses
from .parser import load_vulnerable_version
from .stream_reader import ForwardZipReader

logger = logging.getLogger(__name__)

LOG4J_CORE_POM_PROPS = "META-INF/maven/org.apache.logging.log4j/log4j-core/pom.properties"
JNDI_LOOKUP_CLASS_PATH = "org/apache/logging/log4j/core/lookup/JndiLookup.class"
ARCHIVE_EXTENSIONS = ('.jar', '.war', '.ear')


def is_scan_target(name: str) -> bool:
    """True for .jar/.war/.ear names, case-insensitive."""
    return str(name).lower().endswith(ARCHIVE_EXTENSIONS)


def _has_entry(zip_file: zipfile.ZipFile, name: str) -> bool:
    try:
        zip_file.getinfo(name)
    except KeyError:
        return False
    return True


def _status_for(mitigated: bool) -> ArchiveStatus:
    return ArchiveStatus.MITIGATED if mitigated else ArchiveStatus.VULNERABLE


# --- Single-archive inspection (random access) ---

def check_log4j_version(zip_file: zipfile.ZipFile, archive_path, reporter) -> ArchiveStatus:
    """
    Looks up the log4j-core pom.properties and JndiLookup.class by name in an
    already opened archive and reports a detection when the release is vulnerable.
    """
    if not _has_entry(zip_file, LOG4J_CORE_POM_PROPS):
        return ArchiveStatus.NOT_VULNERABLE

    properties_bytes = zip_file.read(LOG4J_CORE_POM_PROPS)
    release = load_vulnerable_version(properties_bytes, str(archive_path))
    if release is None:
        return ArchiveStatus.NOT_VULNERABLE

    mitigated = not _has_entry(zip_file, JNDI_LOOKUP_CLASS_PATH)
    reporter.detection(ScanRecord(path=str(archive_path), version=str(release), mitigated=mitigated))
    return _status_for(mitigated)


# --- Nested-archive inspection (forward only) ---

def scan_nested_archive(stream: BinaryIO, outer_path, entry_name: str, reporter) -> ArchiveStatus:
    """
    Single linear pass over an archive stored inside another archive. The
    properties entry is parsed while the cursor is on it; the lookup class only
    needs to be seen. Corrupt data raises ArchiveReadError.
    """
    release = None
    lookup_class_seen = False
    source_hint = f"{outer_path} ({entry_name})"

    try:
        for entry in ForwardZipReader(stream):
            if entry.name == LOG4J_CORE_POM_PROPS:
                release = load_vulnerable_version(entry.read(), source_hint)
            elif entry.name == JNDI_LOOKUP_CLASS_PATH:
                lookup_class_seen = True
    except (CorruptStreamError, OSError, EOFError, zlib.error, zipfile.BadZipFile) as e:
        raise ArchiveReadError(outer_path, entry_name, str(e)) from e

    if release is None:
        return ArchiveStatus.NOT_VULNERABLE

    mitigated = not lookup_class_seen
    reporter.detection(ScanRecord(path=source_hint, version=str(release), mitigated=mitigated))
    return _status_for(mitigated)


# --- Aggregation ---

def inspect_archive(path: Path, reporter) -> ArchiveStatus:
    """
    Runs the single-archive inspector on path and the nested inspector on every
    archive stored directly inside it. A file that is not a valid ZIP raises
    MalformedArchiveError.
    """
    try:
        with zipfile.ZipFile(path, 'r') as zip_file:
            status = check_log4j_version(zip_file, path, reporter)

            for member_info in zip_file.infolist():
                if member_info.is_dir() or not is_scan_target(member_info.filename):
                    continue
                logger.debug(f"Scanning nested archive {member_info.filename} in {path}")
                with zip_file.open(member_info) as nested_stream:
                    nested_status = scan_nested_archive(nested_stream, path, member_info.filename, reporter)
                status = combine_statuses(status, nested_status)
    except zipfile.BadZipFile as e:
        raise MalformedArchiveError(f"{path} is not a valid archive: {e}") from e
    return status


def scan_archive_file(path: Path, context: RunContext) -> ArchiveStatus:
    """
    Scans one archive and every archive directly inside it. Failures are
    reported against the file and count as not vulnerable so the walk continues.
    """
    path = Path(path)
    logger.debug(f"Scanning file: {path}")
    try:
        status = inspect_archive(path, context.reporter)
    except ArchiveReadError as e:
        logger.error(f"Scan error on file {path}: {e}")
        context.reporter.error(ScanError(path=str(path), message=str(e), kind=type(e).__name__))
        return ArchiveStatus.NOT_VULNERABLE
    except MalformedArchiveError as e:
        logger.warning(str(e))
        context.reporter.error(ScanError(path=str(path), message=str(e), kind=type(e).__name__))
        return ArchiveStatus.NOT_VULNERABLE
    except Exception as e:
        logger.error(f"Scan error on file {path}: {e}", exc_info=True)
        context.reporter.error(ScanError(path=str(path), message=str(e), kind=MalformedArchiveError.__name__))
        return ArchiveStatus.NOT_VULNERABLE

    if status != ArchiveStatus.NOT_VULNERABLE:
        context.vulnerable_files += 1
    if status == ArchiveStatus.VULNERABLE:
        context.add_pending(path)
    return status
