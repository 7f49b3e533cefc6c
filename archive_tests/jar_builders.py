"""Helpers that build small Java archives on the fly for the tests."""
import io
import zipfile
from pathlib import Path

POM_PROPS = "META-INF/maven/org.apache.logging.log4j/log4j-core/pom.properties"
JNDI_LOOKUP = "org/apache/logging/log4j/core/lookup/JndiLookup.class"
CLASS_BYTES = b"\xca\xfe\xba\xbe\x00\x00\x00\x34" + b"fake class body " * 8


def pom_properties(version, group_id="org.apache.logging.log4j", artifact_id="log4j-core") -> bytes:
    lines = ["#Created by Apache Maven 3.6.3"]
    if version is not None:
        lines.append(f"version={version}")
    if group_id is not None:
        lines.append(f"groupId={group_id}")
    if artifact_id is not None:
        lines.append(f"artifactId={artifact_id}")
    return ("\n".join(lines) + "\n").encode("latin-1")


def log4j_core_entries(version="2.14.1", with_jndi_lookup=True) -> dict:
    entries = {
        "META-INF/": b"",
        "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\n\r\n",
        POM_PROPS: pom_properties(version),
        "org/apache/logging/log4j/core/Logger.class": CLASS_BYTES,
    }
    if with_jndi_lookup:
        entries[JNDI_LOOKUP] = CLASS_BYTES + b"jndi"
    return entries


def build_zip_bytes(entries: dict, compression=zipfile.ZIP_DEFLATED) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


def write_zip(path: Path, entries: dict, compression=zipfile.ZIP_DEFLATED) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(build_zip_bytes(entries, compression))
    return path


class _UnseekableWriter:
    """A sink without tell/seek, which makes zipfile emit data descriptors."""

    def __init__(self):
        self.buffer = io.BytesIO()

    def write(self, data):
        return self.buffer.write(data)

    def flush(self):
        pass

    def close(self):
        pass


def build_streamed_zip_bytes(entries: dict) -> bytes:
    """Deflated entries written the way a non-seekable producer writes them."""
    sink = _UnseekableWriter()
    with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return sink.buffer.getvalue()


def entry_names(source) -> list:
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    with zipfile.ZipFile(source) as zf:
        return zf.namelist()


def read_entries(source) -> dict:
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    with zipfile.ZipFile(source) as zf:
        return {name: zf.read(name) for name in zf.namelist()}
