import typer

from .models import BackupSummary, IndexStats, RunSizeTotals


class ProgressPrinter:
    """Writes completion percentages on a single, rewritten console line."""

    def __init__(self) -> None:
        self.active: bool = False

    def __call__(self, percent: int) -> None:
        self.active = True
        typer.echo(f"\r{percent:03d}% complete.", nl=False)

    def finish(self) -> None:
        if self.active:
            typer.echo("")
            self.active = False


def _format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}"


def format_totals(totals: RunSizeTotals) -> list[str]:
    return [
        f"Files backed up:     {totals.file_count_all - totals.file_count_skipped} of {totals.file_count_all}",
        f"New physical copies: {totals.file_count_copied} ({totals.byte_count_copied:,} bytes)",
        f"Hard linked:         {totals.file_count_linked} ({totals.byte_count_linked:,} bytes)",
        f"Skipped:             {totals.file_count_skipped} ({totals.byte_count_skipped:,} bytes)",
    ]


def print_summary(summary: BackupSummary, index_stats: IndexStats | None = None) -> None:
    """
    Show the end of run summary, followed by all warnings collected during the run.
    """
    typer.echo("Backup complete")
    typer.echo("---------------")
    typer.echo(f"Destination:         {summary.run_path}")
    typer.echo(f"Elapsed time:        {_format_elapsed(summary.elapsed_seconds)}")

    for line in format_totals(summary.totals):
        typer.echo(line)

    if index_stats is not None:
        typer.echo("\nBackups database")
        typer.echo("----------------")
        typer.echo(f"Physical copies:     {index_stats.groups}")
        typer.echo(f"Recorded files:      {index_stats.records}")

    if summary.warnings:
        typer.echo(f"\nWarnings ({len(summary.warnings)})", err=True)
        typer.echo("--------", err=True)
        for warning in summary.warnings:
            typer.echo(warning, err=True)
