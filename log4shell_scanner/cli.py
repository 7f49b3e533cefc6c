#!/usr/bin/env python3
# log4shell_scanner/cli.py
import sys
import logging
import click
from .config import load_config
from .reporting import ConsoleReporter, JsonReporter
from .scanner import scan

VERSION = "1.0.0"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@click.command(context_settings=dict(help_option_names=['-h', '--help']))
@click.argument("target_path", type=click.Path(exists=True, file_okay=True, dir_okay=True, resolve_path=True))
@click.option("--fix", is_flag=True, help="Remove JndiLookup.class from vulnerable archives (asks for confirmation).")
@click.option("--force-fix", is_flag=True, help="Like --fix but without confirmation. Do not use unless you know what you are doing.")
@click.option("--trace", is_flag=True, help="Log every directory and file visited.")
@click.option("--format", "output_format", type=click.Choice(['text', 'json'], case_sensitive=False), default=None, help="Output format.")
@click.option("--exclude", "exclude_paths", multiple=True, metavar="PATH", help="Additional directory to skip (repeatable).")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="YAML configuration file.")
@click.version_option(VERSION, prog_name="log4j2-scan")
def cli(target_path, fix, force_fix, trace, output_format, exclude_paths, config_path):
    """
    CVE-2021-44228 (Log4Shell) scanner: finds vulnerable log4j-core releases
    in .jar/.war/.ear files under TARGET_PATH, including archives nested one
    level deep, and optionally removes JndiLookup.class from them.
    """
    config = load_config(config_path)
    trace = trace or bool(config["trace"])
    output_format = (output_format or config['format'] or 'text').lower()
    exclude_paths = list(config['exclude_paths']) + list(exclude_paths)

    logging.basicConfig(level=logging.DEBUG if trace else logging.WARNING, format=LOG_FORMAT)

    fix = fix or force_fix
    if fix and not force_fix:
        if not click.confirm("This command will remove JndiLookup.class from log4j2-core binaries. Are you sure?", default=False):
            click.echo("interrupted")
            return

    reporter = JsonReporter() if output_format == 'json' else ConsoleReporter()
    context = scan(target_path, fix=fix, trace=trace, reporter=reporter, exclude_paths=exclude_paths)

    # Exit status only reflects vulnerable archives left unfixed, not errors
    sys.exit(1 if context.unfixed_files > 0 else 0)


if __name__ == "__main__":
    cli()
