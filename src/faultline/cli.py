"""Command-line interface for faultline."""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .analyzers import AnalysisReport, ImpactAnalyzer, ProjectProfiler, Severity
from .config import load_configuration
from .core import load_public_surface, load_test_signal, read_diff_text
from .core.git_source import diff_from_repository
from .exceptions import FaultlineError
from .logging_config import setup_logging

console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLE = {
    Severity.BREAKING: ("💥", "Breaking", "bold red"),
    Severity.RISKY: ("⚠️ ", "Risky", "yellow"),
    Severity.SAFE: ("✅", "Safe", "green"),
}

EXIT_ERROR = 2
EXIT_THRESHOLD = 1


@click.group()
@click.version_option(__version__, prog_name="faultline")
def cli():
    """faultline - Change Impact Analysis for Diffs

    Classifies every symbol a diff touches as safe, risky or breaking,
    with the usage, export and posture evidence behind each verdict.

    USAGE:
        faultline analyze changes.patch             # Analyze a diff file
        git diff | faultline analyze -              # Read the diff from stdin
        faultline analyze --git-rev main            # Diff the working tree against main
        faultline analyze changes.patch -f json     # JSON output
        faultline profile                           # Show the detected project posture
    """


@cli.command()
@click.argument('diff_file', required=False, type=click.Path(exists=True, allow_dash=True, dir_okay=False))
@click.option('--root-dir', type=click.Path(exists=True, file_okay=False), default='.',
              help='Root directory of the codebase snapshot (default: current directory)')
@click.option('--git-rev', default='HEAD', help='Revision to diff against when no DIFF_FILE is given')
@click.option('--staged', is_flag=True, help='Diff the index instead of the working tree')
@click.option('--format', '-f', 'output_format', type=click.Choice(['text', 'json']), default='text',
              help='Output format')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Write the report to a file')
@click.option('--time-budget', type=float, help='Deadline in seconds for the whole analysis')
@click.option('--workers', type=int, help='File-scan worker threads per symbol')
@click.option('--test-signal', type=click.Path(exists=True, dir_okay=False),
              help='JSON test-run outcome: {"ran": true, "passed": true, "timed_out": false}')
@click.option('--public-surface', type=click.Path(exists=True, dir_okay=False),
              help='Published-interface manifest (text or JSON list of names)')
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False),
              help='Explicit TOML configuration file')
@click.option('--fail-on', type=click.Choice(['breaking', 'risky', 'never']), default='breaking',
              help='Exit with status 1 when findings reach this severity')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.option('--quiet', '-q', is_flag=True, help='Only log errors')
@click.pass_context
def analyze(ctx, diff_file, root_dir, git_rev, staged, output_format, output, time_budget, workers,
            test_signal, public_surface, config_file, fail_on, verbose, quiet):
    """Analyze the impact of a diff on the codebase at --root-dir.

    Without DIFF_FILE the diff is taken from git: the working tree (or the
    index with --staged) against --git-rev.

    Exit status is 0 when no finding reaches --fail-on, 1 when one does and
    2 when the analysis could not run.
    """
    setup_logging(verbose=verbose, quiet=quiet)
    root = Path(root_dir)

    try:
        config = load_configuration(root, config_file, max_workers=workers,
                                    time_budget_seconds=time_budget)
        diff_text = _load_diff(diff_file, root, git_rev, staged)
        signal = load_test_signal(test_signal) if test_signal else None
        surface = load_public_surface(public_surface) if public_surface else None

        analyzer = ImpactAnalyzer(config)
        if output_format == 'json' or quiet:
            report = analyzer.analyze(diff_text, root, test_signal=signal, public_surface=surface)
        else:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=err_console,
                transient=True,
            ) as progress:
                task = progress.add_task("🔬 Analyzing change impact...", total=None)
                analyzer.on_phase = lambda phase: progress.update(
                    task, description=f"🔬 {phase.replace('_', ' ')}...")
                report = analyzer.analyze(diff_text, root, test_signal=signal, public_surface=surface)
    except FaultlineError as e:
        err_console.print(f"[red]❌ Error:[/red] {escape(str(e))}")
        ctx.exit(EXIT_ERROR)

    _write_report(report, output_format, output)

    if _threshold_reached(report, fail_on):
        ctx.exit(EXIT_THRESHOLD)


@cli.command()
@click.argument('root', required=False, default='.', type=click.Path(exists=True, file_okay=False))
@click.option('--format', '-f', 'output_format', type=click.Choice(['text', 'json']), default='text',
              help='Output format')
@click.option('--verbose', '-v', is_flag=True, help='Debug logging')
@click.pass_context
def profile(ctx, root, output_format, verbose):
    """Show the detected project posture and the manifest evidence behind it."""
    setup_logging(verbose=verbose)
    try:
        config = load_configuration(Path(root))
    except FaultlineError as e:
        err_console.print(f"[red]❌ Error:[/red] {escape(str(e))}")
        ctx.exit(EXIT_ERROR)

    result = ProjectProfiler(config).profile(Path(root))
    if output_format == 'json':
        click.echo(json.dumps({"posture": result.posture.value, "evidence": list(result.evidence)},
                              indent=2))
        return

    console.print(f"🏷️  [bold]Posture:[/bold] {result.posture.value}")
    if result.evidence:
        for item in result.evidence:
            console.print(f"  • {escape(item)}")
    else:
        console.print("  • [dim]no manifest evidence (default posture)[/dim]")


def _load_diff(diff_file: Optional[str], root: Path, git_rev: str, staged: bool) -> str:
    """Diff text from a file, stdin or git."""
    if diff_file == '-':
        return click.get_text_stream('stdin').read()
    if diff_file:
        return read_diff_text(diff_file)
    return diff_from_repository(root, rev=git_rev, staged=staged)


def _threshold_reached(report: AnalysisReport, fail_on: str) -> bool:
    if fail_on == 'never':
        return False
    if fail_on == 'risky':
        return bool(report.breaking or report.risky)
    return bool(report.breaking)


def _write_report(report: AnalysisReport, output_format: str, output: Optional[str]):
    if output_format == 'json':
        payload = json.dumps(report.to_dict(), indent=2)
        if output:
            Path(output).write_text(payload + "\n", encoding='utf-8')
            err_console.print(f"📄 Report written to {escape(output)}")
        else:
            click.echo(payload)
        return

    if output:
        with open(output, 'w', encoding='utf-8') as f:
            _display_text_report(report, Console(file=f, width=120, no_color=True))
        err_console.print(f"📄 Report written to {escape(output)}")
    else:
        _display_text_report(report, console)


def _display_text_report(report: AnalysisReport, out: Console):
    """Render findings grouped by severity using Rich."""
    out.print(f"\n🔬 [bold]Change Impact Analysis[/bold]")
    out.print(f"🏷️  Posture: {report.profile.posture.value}")

    for severity in (Severity.BREAKING, Severity.RISKY):
        findings = [f for f in report.findings if f.severity is severity]
        if not findings:
            continue
        icon, title, style = SEVERITY_STYLE[severity]
        out.print(f"\n{icon} [{style}]{title} ({len(findings)})[/{style}]")
        table = Table()
        table.add_column("Symbol", style="cyan")
        table.add_column("File", style="magenta")
        table.add_column("Change", style="yellow")
        table.add_column("Visibility")
        table.add_column("Impact")
        for finding in findings:
            candidate = finding.candidate
            change = candidate.change_kind.value
            if finding.tags:
                change += f" [{', '.join(finding.tags)}]"
            table.add_row(
                escape(candidate.symbol),
                escape(f"{candidate.file_path}:{candidate.line_number}"),
                escape(change),
                finding.visibility.value,
                escape(finding.impact),
            )
        out.print(table)

        for finding in findings:
            out.print(f"  [bold]{escape(finding.candidate.symbol)}[/bold] → {escape(finding.remediation)}")
            usages = finding.usage_evidence
            for item in usages[:5]:
                out.print(f"    - {escape(item.detail)}")
            if len(usages) > 5:
                out.print(f"    ... and {len(usages) - 5} more")

    safe = report.safe
    if safe:
        names = ", ".join(escape(f.candidate.symbol) for f in safe[:10])
        more = f" ... and {len(safe) - 10} more" if len(safe) > 10 else ""
        out.print(f"\n✅ [green]{len(safe)} safe changes:[/green] {names}{more}")

    affected = report.most_affected_files(5)
    if affected:
        out.print(f"\n📁 [bold]Most affected files[/bold]")
        for path, count in affected:
            out.print(f"  • {escape(path)} ({count} findings)")

    for warning in report.warnings:
        out.print(f"[yellow]⚠️  {escape(warning)}[/yellow]")

    out.print(f"\n[bold]{escape(report.verdict)}[/bold]")
