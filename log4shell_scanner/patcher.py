# log4shell_scanner/patcher.py
"""
In-place removal of JndiLookup.class from vulnerable archives.

Each file goes through backup -> truncate -> rewrite. The original is truncated
and rewritten through the same directory entry, so hard links and symlink
targets keep pointing at the patched file. The .bak copy is never overwritten
and never deleted; it is what a failed rewrite is rolled back from.

Only the outer archive and the archives stored directly inside it are
filtered. Archives nested deeper are copied unchanged.
"""
import os
import shutil
import zipfile
import logging
import tempfile
from pathlib import Path
from typing import BinaryIO
from .errors import BackupConflictError, PatchError, RewriteError, RollbackError, TruncateError
from .java_analyser import JNDI_LOOKUP_CLASS_PATH, is_scan_target
from .models import PatchOutcome, PatchState, RunContext, ScanError
from .stream_reader import METHOD_DEFLATED, ForwardZipReader

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".bak"
CHUNK_SIZE = 32768
# Nested archives larger than this are spooled to a temporary file instead of memory
SPOOL_MAX_SIZE = 16 * 1024 * 1024


def backup_path_for(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


# --- Plain file operations ---

def create_backup(path: Path, backup_path: Path) -> None:
    """Copies path to backup_path byte for byte. Refuses to touch an existing backup."""
    if backup_path.exists():
        raise BackupConflictError(path, f"Cannot create backup file. {backup_path.name} already exists. Skipping {path}")
    try:
        src = open(path, 'rb')
    except OSError as e:
        raise PatchError(path, f"Cannot read file {path} - {e}") from e
    with src:
        try:
            dst = open(backup_path, 'xb')
        except FileExistsError as e:
            raise BackupConflictError(path, f"Cannot create backup file. {backup_path.name} already exists. Skipping {path}") from e
        except OSError as e:
            raise PatchError(path, f"Cannot create backup file {backup_path} - {e}") from e
        try:
            with dst:
                shutil.copyfileobj(src, dst, CHUNK_SIZE)
        except OSError as e:
            # The partial backup was created by us a moment ago, it is safe to drop
            try:
                backup_path.unlink()
            except OSError:
                logger.warning(f"Could not remove incomplete backup {backup_path}")
            raise PatchError(path, f"Cannot copy file {path} - {e}") from e


def truncate_in_place(path: Path) -> None:
    try:
        with open(path, 'r+b') as fh:
            fh.truncate(0)
    except OSError as e:
        raise TruncateError(path, f"Cannot patch locked file {path} - {e}") from e


def restore_from_backup(backup_path: Path, path: Path) -> None:
    """Copies the backup over the original without replacing its directory entry."""
    try:
        with open(backup_path, 'rb') as src, open(path, 'wb') as dst:
            shutil.copyfileobj(src, dst, CHUNK_SIZE)
    except OSError as e:
        raise RollbackError(path, f"Cannot restore {path} from {backup_path} - {e}") from e


# --- Archive rewriting ---

def _copy_info(src_info: zipfile.ZipInfo) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(src_info.filename, date_time=src_info.date_time)
    info.compress_type = src_info.compress_type
    info.external_attr = src_info.external_attr
    info.create_system = src_info.create_system
    info.comment = src_info.comment
    info.file_size = src_info.file_size
    return info


def rewrite_nested_archive(stream: BinaryIO, out: BinaryIO) -> int:
    """
    Reads an archive forward-only from stream and writes it to out without
    JndiLookup.class. Entries that are archives themselves are copied as they are.
    Returns how many entries were dropped.
    """
    removed = 0
    with zipfile.ZipFile(out, 'w') as inner_out:
        for entry in ForwardZipReader(stream):
            if entry.name == JNDI_LOOKUP_CLASS_PATH:
                removed += 1
                continue

            info = zipfile.ZipInfo(entry.name, date_time=entry.header.date_time)
            if entry.header.method == METHOD_DEFLATED:
                info.compress_type = zipfile.ZIP_DEFLATED
            if entry.is_dir():
                inner_out.writestr(info, b"")
                continue

            if not entry.header.has_data_descriptor:
                info.file_size = entry.header.file_size
            with inner_out.open(info, 'w') as writer:
                for chunk in entry.iter_chunks():
                    writer.write(chunk)
    return removed


def _copy_nested_entry(src: zipfile.ZipFile, src_info: zipfile.ZipInfo, zout: zipfile.ZipFile) -> int:
    with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
        with src.open(src_info) as reader:
            removed = rewrite_nested_archive(reader, spool)
        if not removed:
            # Nothing to drop (this also covers entries that are not archives at all)
            with src.open(src_info) as reader, zout.open(_copy_info(src_info), 'w') as writer:
                shutil.copyfileobj(reader, writer, CHUNK_SIZE)
            return 0
        spool.seek(0, os.SEEK_END)
        info = _copy_info(src_info)
        info.file_size = spool.tell()
        spool.seek(0)
        with zout.open(info, 'w') as writer:
            shutil.copyfileobj(spool, writer, CHUNK_SIZE)
    logger.debug(f"Removed {JNDI_LOOKUP_CLASS_PATH} from nested archive {src_info.filename}")
    return removed


def copy_except_jndi_lookup(src_path: Path, dst: BinaryIO) -> int:
    """
    Writes every entry of the archive at src_path to dst, in order, except
    JndiLookup.class at the top level and inside directly nested archives.
    Returns how many entries were dropped in total.
    """
    removed = 0
    with zipfile.ZipFile(src_path, 'r') as src, zipfile.ZipFile(dst, 'w') as zout:
        zout.comment = src.comment
        for src_info in src.infolist():
            if src_info.filename == JNDI_LOOKUP_CLASS_PATH:
                removed += 1
                continue

            if src_info.is_dir():
                zout.writestr(_copy_info(src_info), b"")
                continue

            if is_scan_target(src_info.filename):
                removed += _copy_nested_entry(src, src_info, zout)
                continue

            with src.open(src_info) as reader, zout.open(_copy_info(src_info), 'w') as writer:
                shutil.copyfileobj(reader, writer, CHUNK_SIZE)
    return removed


def rewrite_archive(backup_path: Path, path: Path) -> int:
    """Rewrites the (already truncated) file at path from its backup."""
    try:
        with open(path, 'r+b') as dst:
            return copy_except_jndi_lookup(backup_path, dst)
    except Exception as e:
        raise RewriteError(path, f"Cannot fix file ({e}). rollback original file {path}") from e


# --- Patch engine ---

def _failed(path: Path, error: PatchError, reporter, state: PatchState) -> PatchOutcome:
    reporter.error(ScanError(path=str(path), message=str(error), kind=type(error).__name__))
    return PatchOutcome(path=str(path), fixed=False, state=state, message=str(error))


def patch_archive(path: Path, reporter) -> PatchOutcome:
    """
    Runs one file through backup, truncate and rewrite, rolling back from the
    backup when the rewrite fails. Never raises for file-level failures.
    """
    path = Path(path)
    backup_path = backup_path_for(path)
    logger.debug(f"Patching {path}")

    # Backing up
    try:
        create_backup(path, backup_path)
    except PatchError as e:
        logger.error(str(e))
        return _failed(path, e, reporter, PatchState.FAILED)

    # Truncating
    try:
        truncate_in_place(path)
    except TruncateError as e:
        logger.error(f"{e}. Backup kept at {backup_path}")
        return _failed(path, e, reporter, PatchState.FAILED)

    # Rewriting
    try:
        removed = rewrite_archive(backup_path, path)
    except RewriteError as e:
        logger.error(str(e), exc_info=True)
        reporter.error(ScanError(path=str(path), message=str(e), kind=type(e).__name__))
        try:
            restore_from_backup(backup_path, path)
        except RollbackError as rollback_error:
            logger.critical(f"{rollback_error}. The only intact copy is {backup_path}")
            return _failed(path, rollback_error, reporter, PatchState.FAILED)
        logger.info(f"Rolled back {path} from {backup_path}")
        return PatchOutcome(path=str(path), fixed=False, state=PatchState.ROLLED_BACK, message=str(e))

    logger.info(f"Fixed {path}: removed {removed} JndiLookup.class entr{'y' if removed == 1 else 'ies'}")
    return PatchOutcome(path=str(path), fixed=True, state=PatchState.COMMITTED)


def fix_pending(context: RunContext) -> None:
    """Patches every archive collected during the scan pass, one at a time."""
    for path in context.pending_patches:
        outcome = patch_archive(path, context.reporter)
        if outcome.fixed:
            context.fixed_files += 1
        context.reporter.patch_outcome(outcome)
