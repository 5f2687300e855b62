"""
CLI for the research job engine.

Commands:
    erjobs submit SYMBOL NAME - Queue a research job
    erjobs status JOB_ID - Show a job, its steps and its result
    erjobs jobs - List recent jobs
    erjobs run SYMBOL NAME - Submit a job and process it immediately
    erjobs serve - Run the background processor until Ctrl-C
    erjobs config - Show current configuration
    erjobs version - Print version
"""

from __future__ import annotations

import asyncio
import signal
from typing import Annotated

import orjson
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from erjobs import __version__
from erjobs.app import open_runtime
from erjobs.cancellation import CancelToken
from erjobs.config import Settings, clear_settings_cache, get_settings
from erjobs.exceptions import ERJobsError
from erjobs.logging import setup_logging
from erjobs.types import AnalysisDepth, Job, JobStatus, Step

app = typer.Typer(
    name="erjobs",
    help="Equity research jobs - queued company research with step-by-step progress",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

STATUS_STYLES = {
    JobStatus.PENDING: "yellow",
    JobStatus.RUNNING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
}


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _load_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'erjobs config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    return settings


def _print_step(step: Step) -> None:
    marker = "[green]✓[/green]" if step.success else "[red]✗[/red]"
    line = f"{marker} [dim]{step.step_number:>3}[/dim] [cyan]{step.stage}[/cyan] {step.action}"
    if step.error_message:
        line += f" [red]({step.error_message})[/red]"
    console.print(line)


def _print_job(job: Job, show_steps: bool = True) -> None:
    style = STATUS_STYLES[job.status]
    lines = [
        f"[bold]Job ID:[/bold] {job.job_id}",
        f"[bold]Company:[/bold] {job.company_name} ({job.symbol})",
        f"[bold]Depth:[/bold] {job.depth.value}",
        f"[bold]Status:[/bold] [{style}]{job.status.value}[/{style}]",
        f"[bold]Created:[/bold] {job.created_at:%Y-%m-%d %H:%M:%S UTC}",
    ]
    if job.started_at:
        lines.append(f"[bold]Started:[/bold] {job.started_at:%Y-%m-%d %H:%M:%S UTC}")
    if job.completed_at:
        lines.append(f"[bold]Finished:[/bold] {job.completed_at:%Y-%m-%d %H:%M:%S UTC}")
    if job.error_message:
        lines.append(f"[bold red]Error:[/bold red] {job.error_message}")
    console.print(Panel("\n".join(lines), title="[bold cyan]Research Job[/bold cyan]", border_style=style))

    if show_steps and job.steps:
        table = Table(title="Steps", show_header=True)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Stage", style="cyan")
        table.add_column("Action")
        table.add_column("OK", justify="center")
        for step in job.steps:
            action = step.action if step.success else f"{step.action}\n[red]{step.error_message or ''}[/red]"
            table.add_row(str(step.step_number), step.stage, action, "✓" if step.success else "[red]✗[/red]")
        console.print(table)

    if job.result_json:
        result = orjson.loads(job.result_json)
        console.print(
            Panel(
                f"[bold]Signal:[/bold] {result['signal']}\n"
                f"[bold]Confidence:[/bold] {result['confidence']:.0%}\n\n"
                f"[bold]Thesis:[/bold]\n{result['thesis']}",
                title=f"[bold green]{result['company']}[/bold green]",
                border_style="green",
            )
        )
        for insight in result.get("insights", []):
            console.print(f"  • [{insight['category']}] {insight['insight']}")


@app.command()
def submit(
    symbol: Annotated[str, typer.Argument(help="Stock ticker symbol (e.g., AAPL)")],
    company_name: Annotated[str, typer.Argument(help="Company name (e.g., 'Apple Inc.')")],
    depth: Annotated[
        AnalysisDepth,
        typer.Option("--depth", "-d", help="Analysis depth"),
    ] = AnalysisDepth.STANDARD,
) -> None:
    """Queue a research job; a running 'erjobs serve' will pick it up."""
    settings = _load_settings()

    async def _submit() -> Job:
        async with open_runtime(settings) as runtime:
            return await runtime.service.create_job(symbol, company_name, depth)

    try:
        job = asyncio.run(_submit())
    except ERJobsError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    console.print(f"[green]Job queued:[/green] {job.job_id}")


@app.command()
def status(
    job_id: Annotated[str, typer.Argument(help="Job ID returned by submit")],
    steps: Annotated[bool, typer.Option("--steps/--no-steps", help="Show recorded steps")] = True,
) -> None:
    """Show a job's status, steps and result."""
    settings = _load_settings()

    async def _status() -> Job:
        async with open_runtime(settings) as runtime:
            return await runtime.service.get_job(job_id)

    try:
        job = asyncio.run(_status())
    except ERJobsError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    _print_job(job, show_steps=steps)


@app.command()
def jobs(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of jobs to show")] = 20,
) -> None:
    """List recent jobs."""
    settings = _load_settings()

    async def _list() -> list[Job]:
        async with open_runtime(settings) as runtime:
            return await runtime.store.list_jobs(limit)

    table = Table(title="Recent Jobs", show_header=True)
    table.add_column("Job ID", style="dim")
    table.add_column("Symbol", style="cyan")
    table.add_column("Depth")
    table.add_column("Status")
    table.add_column("Created")
    for job in asyncio.run(_list()):
        style = STATUS_STYLES[job.status]
        table.add_row(
            job.job_id,
            job.symbol,
            job.depth.value,
            f"[{style}]{job.status.value}[/{style}]",
            f"{job.created_at:%Y-%m-%d %H:%M}",
        )
    console.print(table)


@app.command()
def run(
    symbol: Annotated[str, typer.Argument(help="Stock ticker symbol (e.g., AAPL)")],
    company_name: Annotated[str, typer.Argument(help="Company name (e.g., 'Apple Inc.')")],
    depth: Annotated[
        AnalysisDepth,
        typer.Option("--depth", "-d", help="Analysis depth"),
    ] = AnalysisDepth.STANDARD,
) -> None:
    """Submit a job and process it in this process, printing steps as they happen."""
    settings = _load_settings()

    async def _run() -> Job | None:
        async with open_runtime(settings) as runtime:
            job = await runtime.service.create_job(symbol, company_name, depth)
            console.print(f"[dim]Job {job.job_id}[/dim]\n")

            async def print_step(step: Step) -> None:
                _print_step(step)

            processed = await runtime.processor().process_job(job.job_id, listener=print_step)
            return await runtime.service.get_job(job.job_id) if processed else None

    try:
        job = asyncio.run(_run())
    except ERJobsError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)

    if job is None:
        raise typer.Exit(1)
    console.print()
    _print_job(job, show_steps=False)
    if job.status is JobStatus.FAILED:
        raise typer.Exit(1)


@app.command()
def serve() -> None:
    """Run the background processor until interrupted."""
    settings = _load_settings()

    async def _serve() -> None:
        stop = CancelToken()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.cancel, "shutdown")
            except NotImplementedError:
                pass

        async with open_runtime(settings) as runtime:
            await runtime.processor().run(stop)

    console.print(
        f"[bold green]Processing jobs[/bold green] "
        f"[dim](poll every {settings.POLL_INTERVAL_SECONDS:g}s, Ctrl-C to stop)[/dim]"
    )
    asyncio.run(_serve())
    console.print("[dim]Processor stopped.[/dim]")


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with API keys redacted and the
    providers that will be used.
    """
    console.print()
    console.print("[bold]Research Job Engine Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid.[/red]")
        error_console.print()
        error_console.print("Check LLM_BASE_URL, PROVIDER_CONCURRENCY and POLL_INTERVAL_SECONDS.")
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)
    console.print()

    financial = settings.available_financial_providers
    news = settings.available_news_providers
    if financial:
        console.print(f"[bold]Financial providers:[/bold] {', '.join(financial)}")
    else:
        console.print("[yellow]No financial providers configured.[/yellow]")
    if news:
        console.print(f"[bold]News providers:[/bold] {', '.join(news)}")
    else:
        console.print("[yellow]No news providers configured.[/yellow]")
    if not settings.llm_configured:
        console.print("[yellow]No LLM configured; planning and synthesis use rule-based fallbacks.[/yellow]")

    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"erjobs version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
