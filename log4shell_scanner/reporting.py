# log4shell_scanner/reporting.py
import json
from dataclasses import asdict
import click
from .models import PatchOutcome, RunContext, ScanError, ScanRecord


class ScanReporter:
    """
    Collects the structured records a run produces, in the order they happen.
    Subclasses add presentation on top.
    """

    def __init__(self):
        self.detections: list[ScanRecord] = []
        self.patch_outcomes: list[PatchOutcome] = []
        self.errors: list[ScanError] = []

    def detection(self, record: ScanRecord) -> None:
        self.detections.append(record)

    def patch_outcome(self, outcome: PatchOutcome) -> None:
        self.patch_outcomes.append(outcome)

    def error(self, error: ScanError) -> None:
        self.errors.append(error)

    def summary(self, context: RunContext, elapsed: float) -> None:
        pass

    def to_dict(self, context: RunContext, elapsed: float) -> dict:
        return {
            "detections": [asdict(r) for r in self.detections],
            "patchOutcomes": [{**asdict(o), "state": o.state.value} for o in self.patch_outcomes],
            "errors": [asdict(e) for e in self.errors],
            "summary": {
                "scannedDirectories": context.scanned_dirs,
                "scannedFiles": context.scanned_files,
                "vulnerableFiles": context.vulnerable_files,
                "fixedFiles": context.fixed_files if context.fix else None,
                "elapsedSeconds": round(elapsed, 2),
            },
        }


class ConsoleReporter(ScanReporter):
    """Prints each record as soon as it arrives."""

    def detection(self, record: ScanRecord) -> None:
        super().detection(record)
        msg = f"[*] Found CVE-2021-44228 vulnerability in {record.path}, log4j {record.version}"
        if record.mitigated:
            msg += " (mitigated)"
        click.echo(msg)

    def patch_outcome(self, outcome: PatchOutcome) -> None:
        super().patch_outcome(outcome)
        if outcome.fixed:
            click.secho(f"Fixed: {outcome.path}", fg="green")

    def error(self, error: ScanError) -> None:
        super().error(error)
        click.secho(f"Error: {error.message} ({error.path})", fg="red", err=True)

    def summary(self, context: RunContext, elapsed: float) -> None:
        click.echo()
        click.echo(f"Scanned {context.scanned_dirs} directories and {context.scanned_files} files")
        click.echo(f"Found {context.vulnerable_files} vulnerable files")
        if context.fix:
            click.echo(f"Fixed {context.fixed_files} vulnerable files")
        click.echo(f"Completed in {elapsed:.2f} seconds")


class JsonReporter(ScanReporter):
    """Stays quiet during the run and prints one JSON document at the end."""

    def summary(self, context: RunContext, elapsed: float) -> None:
        click.echo(json.dumps(self.to_dict(context, elapsed), indent=2))
