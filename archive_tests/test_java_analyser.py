import io
import sys
import zipfile
import tempfile
import unittest
from pathlib import Path

# Add parent directory to path so we can import our modules
sys.path.append(str(Path(__file__).parent.parent))

from log4shell_scanner import java_analyser
from log4shell_scanner.errors import ArchiveReadError, MalformedArchiveError
from log4shell_scanner.models import ArchiveStatus, RunContext, ScanRecord, combine_statuses
from log4shell_scanner.reporting import ScanReporter
from jar_builders import (CLASS_BYTES, JNDI_LOOKUP, POM_PROPS, build_zip_bytes, log4j_core_entries,
                          pom_properties, write_zip)


class TestStatusPrecedence(unittest.TestCase):
    def test_combine(self):
        NV, V, M = ArchiveStatus.NOT_VULNERABLE, ArchiveStatus.VULNERABLE, ArchiveStatus.MITIGATED
        self.assertEqual(combine_statuses(), NV)
        self.assertEqual(combine_statuses(NV, NV), NV)
        self.assertEqual(combine_statuses(NV, M), M)
        self.assertEqual(combine_statuses(M, V, NV), V)

    def test_scan_target_names(self):
        for name in ["a.jar", "B.WAR", "c.Ear", "WEB-INF/lib/x.jar"]:
            self.assertTrue(java_analyser.is_scan_target(name), name)
        for name in ["a.zip", "jar", "x.jar.txt", "META-INF/"]:
            self.assertFalse(java_analyser.is_scan_target(name), name)


class TestSingleArchiveInspector(unittest.TestCase):
    def setUp(self):
        self.reporter = ScanReporter()

    def _check(self, entries):
        with zipfile.ZipFile(io.BytesIO(build_zip_bytes(entries))) as zf:
            return java_analyser.check_log4j_version(zf, "/tmp/app.jar", self.reporter)

    def test_vulnerable(self):
        self.assertEqual(self._check(log4j_core_entries("2.14.1")), ArchiveStatus.VULNERABLE)
        self.assertEqual(self.reporter.detections, [ScanRecord("/tmp/app.jar", "2.14.1", False)])

    def test_mitigated(self):
        status = self._check(log4j_core_entries("2.14.1", with_jndi_lookup=False))
        self.assertEqual(status, ArchiveStatus.MITIGATED)
        self.assertEqual(self.reporter.detections, [ScanRecord("/tmp/app.jar", "2.14.1", True)])

    def test_fixed_release(self):
        self.assertEqual(self._check(log4j_core_entries("2.16.0")), ArchiveStatus.NOT_VULNERABLE)
        self.assertEqual(self.reporter.detections, [])

    def test_no_properties(self):
        entries = {JNDI_LOOKUP: CLASS_BYTES, "Main.class": CLASS_BYTES}
        self.assertEqual(self._check(entries), ArchiveStatus.NOT_VULNERABLE)

    def test_properties_without_version(self):
        entries = {POM_PROPS: pom_properties(None), JNDI_LOOKUP: CLASS_BYTES}
        self.assertEqual(self._check(entries), ArchiveStatus.NOT_VULNERABLE)


class TestNestedArchiveInspector(unittest.TestCase):
    def setUp(self):
        self.reporter = ScanReporter()

    def _scan(self, data):
        return java_analyser.scan_nested_archive(io.BytesIO(data), "/tmp/app.war",
                                                 "WEB-INF/lib/log4j-core.jar", self.reporter)

    def test_vulnerable(self):
        status = self._scan(build_zip_bytes(log4j_core_entries("2.0")))
        self.assertEqual(status, ArchiveStatus.VULNERABLE)
        self.assertEqual(self.reporter.detections,
                         [ScanRecord("/tmp/app.war (WEB-INF/lib/log4j-core.jar)", "2.0", False)])

    def test_lookup_class_before_properties(self):
        entries = {JNDI_LOOKUP: CLASS_BYTES, POM_PROPS: pom_properties("2.12.1")}
        self.assertEqual(self._scan(build_zip_bytes(entries)), ArchiveStatus.VULNERABLE)

    def test_mitigated(self):
        status = self._scan(build_zip_bytes(log4j_core_entries("2.14.1", with_jndi_lookup=False)))
        self.assertEqual(status, ArchiveStatus.MITIGATED)

    def test_lookup_class_without_properties(self):
        self.assertEqual(self._scan(build_zip_bytes({JNDI_LOOKUP: CLASS_BYTES})), ArchiveStatus.NOT_VULNERABLE)

    def test_entry_that_is_not_a_zip(self):
        self.assertEqual(self._scan(b"placeholder, the real jar is downloaded at startup"),
                         ArchiveStatus.NOT_VULNERABLE)
        self.assertEqual(self.reporter.detections, [])

    def test_corrupt_stream(self):
        with self.assertRaises(ArchiveReadError) as ctx:
            self._scan(b"PK\x03\x04garbage")
        self.assertEqual(ctx.exception.outer_path, "/tmp/app.war")
        self.assertEqual(ctx.exception.entry_name, "WEB-INF/lib/log4j-core.jar")


class TestScanAggregator(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.context = RunContext(reporter=ScanReporter())

    def tearDown(self):
        self.tmp.cleanup()

    def test_vulnerable_archive_is_pending(self):
        path = write_zip(self.root / "app.jar", log4j_core_entries("2.14.1"))
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.VULNERABLE)
        self.assertEqual(self.context.pending_patches, [path])
        self.assertEqual(self.context.vulnerable_files, 1)

    def test_mitigated_archive_is_not_pending(self):
        path = write_zip(self.root / "app.jar", log4j_core_entries("2.14.1", with_jndi_lookup=False))
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.MITIGATED)
        self.assertEqual(self.context.pending_patches, [])
        self.assertEqual(self.context.vulnerable_files, 1)

    def test_nested_fixed_release_without_outer_properties(self):
        inner = build_zip_bytes(log4j_core_entries("2.16.0"))
        path = write_zip(self.root / "app.war", {"WEB-INF/lib/log4j-core-2.16.0.jar": inner,
                                                 "index.html": b"<html/>"})
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.NOT_VULNERABLE)
        self.assertEqual(self.context.pending_patches, [])
        self.assertEqual(self.context.reporter.detections, [])

    def test_nested_vulnerable_beats_outer_mitigated(self):
        inner = build_zip_bytes(log4j_core_entries("2.14.1"))
        entries = log4j_core_entries("2.14.0", with_jndi_lookup=False)
        entries["BOOT-INF/lib/log4j-core-2.14.1.JAR"] = inner
        path = write_zip(self.root / "app.jar", entries)
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.VULNERABLE)
        self.assertEqual([d.mitigated for d in self.context.reporter.detections], [True, False])
        self.assertEqual(self.context.pending_patches, [path])

    def test_nested_mitigated(self):
        inner = build_zip_bytes(log4j_core_entries("2.14.1", with_jndi_lookup=False))
        path = write_zip(self.root / "app.ear", {"lib/log4j-core.jar": inner}, zipfile.ZIP_STORED)
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.MITIGATED)
        self.assertEqual(self.context.pending_patches, [])

    def test_corrupt_nested_archive_fails_only_this_file(self):
        path = write_zip(self.root / "app.war", {"WEB-INF/lib/broken.jar": b"PK\x03\x04garbage",
                                                 **log4j_core_entries("2.14.1")})
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.NOT_VULNERABLE)
        self.assertEqual(self.context.pending_patches, [])
        self.assertEqual([e.kind for e in self.context.reporter.errors], ["ArchiveReadError"])
        self.assertEqual(self.context.reporter.errors[0].path, str(path))

    def test_text_file_named_jar_does_not_hide_outer_detection(self):
        entries = {**log4j_core_entries("2.14.1"), "lib/placeholder.jar": b"this file is replaced during the build\n"}
        path = write_zip(self.root / "app.jar", entries)
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.VULNERABLE)
        self.assertEqual(self.context.pending_patches, [path])
        self.assertEqual(self.context.vulnerable_files, 1)
        self.assertEqual(self.context.reporter.errors, [])

    def test_not_an_archive(self):
        path = self.root / "notes.jar"
        path.write_text("definitely not a zip file")
        self.assertEqual(java_analyser.scan_archive_file(path, self.context), ArchiveStatus.NOT_VULNERABLE)
        self.assertEqual([e.kind for e in self.context.reporter.errors], ["MalformedArchiveError"])
        self.assertEqual(self.context.vulnerable_files, 0)

    def test_inspect_archive_raises_malformed_archive_error(self):
        path = self.root / "notes.war"
        path.write_bytes(b"PK\x03\x04 but nothing else")
        with self.assertRaises(MalformedArchiveError):
            java_analyser.inspect_archive(path, ScanReporter())


if __name__ == '__main__':
    unittest.main()
