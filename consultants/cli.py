"""Click CLI: config loading, panel selection, consultation, cache maintenance."""

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

import click
import yaml
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from config.config_loader import AgentSpec, AppConfig, is_available, load_config
from consultants.adapters.anthropic import AnthropicAdapter
from consultants.adapters.base import AgentAdapter
from consultants.adapters.command import CommandAdapter
from consultants.adapters.gemini import GeminiAdapter
from consultants.adapters.openai_compat import OpenAICompatAdapter
from consultants.cache import ResponseCache
from consultants.consult import consult
from consultants.errors import AgentError, InsufficientAgents
from consultants.healthcheck import run_health_checks
from consultants.models import ConsensusResult, ConsultationResult, ConsultOptions, RoundRecord, Task
from consultants.output import print_consensus, print_round_summary, save_to_file
from consultants.voting import STRATEGIES

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

ADAPTER_CLASSES: dict[str, type[AgentAdapter]] = {
    "command": CommandAdapter,
    "anthropic": AnthropicAdapter,
    "openai": OpenAICompatAdapter,
    "gemini": GeminiAdapter,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_adapter(spec: AgentSpec) -> AgentAdapter:
    if spec.adapter not in ADAPTER_CLASSES:
        raise AgentError(spec.name, f"Unknown adapter '{spec.adapter}'")
    return ADAPTER_CLASSES[spec.adapter](spec)


def _load(ctx: click.Context) -> AppConfig:
    try:
        settings_path = ctx.obj.get("settings_path")
        return load_config(settings_path) if settings_path else load_config()
    except (FileNotFoundError, KeyError, ValueError, yaml.YAMLError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _determine_panel(config: AppConfig, agents_arg: str | None) -> tuple[list[AgentSpec], list[str]]:
    """Requested agents (--agents, else the default panel) split into available specs and unavailable names."""
    names = [n.strip() for n in agents_arg.split(",")] if agents_arg else list(config.defaults.default_panel)
    unknown = [n for n in names if n and n not in config.agents]
    if unknown:
        console.print(f"[bold red]Error:[/bold red] Unknown agent(s): {', '.join(unknown)}")
        sys.exit(1)
    panel = []
    unavailable = []
    for name in filter(None, names):
        if name in config.available_agents:
            panel.append(config.agents[name])
        else:
            logger.warning("Agent '%s' is not available, skipping", name)
            unavailable.append(name)
    return panel, unavailable


def _check_and_filter_agents(panel: list[AgentSpec]) -> tuple[list[AgentSpec], list[str]]:
    """Run health checks, print results, and ask the user what to do on failures.

    Returns the working agents and the names of those that failed.
    """
    console.print("\n[bold]Checking agents...[/bold]")
    adapters: dict[str, AgentAdapter] = {}
    failed_names: list[str] = []
    for spec in panel:
        try:
            adapters[spec.name] = _build_adapter(spec)
        except AgentError as exc:
            console.print(f"  [red]FAIL[/red] {spec.name}: {exc}")
            failed_names.append(spec.name)

    results = asyncio.run(run_health_checks(adapters))
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed_names.append(name)

    if not failed_names:
        console.print()
        return panel, []

    working = [spec for spec in panel if spec.name not in failed_names]
    console.print(f"\n[yellow]{len(failed_names)} agent(s) failed:[/yellow] {', '.join(failed_names)}")
    if not working:
        return working, failed_names
    console.print(f"Working agents: {', '.join(s.name for s in working)}")
    if not click.confirm("Continue with working agents only?", default=True):
        sys.exit(0)
    console.print()
    return working, failed_names


async def _consult_until_interrupted(**kwargs) -> ConsultationResult:
    """Run consult; Ctrl+C cancels the current round and yields a partial result."""
    loop = asyncio.get_running_loop()
    job = asyncio.ensure_future(consult(**kwargs))
    # add_signal_handler is not available on Windows; Ctrl+C then raises KeyboardInterrupt.
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, job.cancel)
    try:
        return await job
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)


@click.group()
@click.option(
    "--config", "settings_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    envvar="CONSULTANTS_SETTINGS",
    help="Path to settings.yaml (default: bundled config/settings.yaml)",
)
@click.pass_context
def main(ctx: click.Context, settings_path: Path | None) -> None:
    """AI Consultants -- ask a panel of agents and measure how much they agree.

    \b
    Examples:
      consultants ask "Should we use REST or GraphQL?"
      consultants ask "Review this auth flow" --category SECURITY --debate --rounds 3
      consultants ask "Fix this bug" --context-file ctx.md --agents claude,codex
      consultants cache stats
      consultants doctor
    """
    # Model responses may contain characters the Windows console codepage cannot render.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_path


@main.command()
@click.argument("question")
@click.option("--context-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="File whose content is sent along with the question")
@click.option("--category", default="GENERAL", show_default=True, help="Question category (routing and debate policy)")
@click.option("--agents", "agents_arg", default=None, help="Comma-separated agent list, overrides the default panel")
@click.option("--debate/--no-debate", default=None, help="Enable cross-critique rounds (default: from config)")
@click.option("--rounds", default=None, type=click.IntRange(min=1), help="Total rounds including the first")
@click.option("--strategy", type=click.Choice(STRATEGIES), default=None, help="Voting strategy (default: from config)")
@click.option("--no-cache", is_flag=True, default=False, help="Bypass the response cache")
@click.option("--no-escalation", is_flag=True, default=False, help="Never re-ask low-confidence agents")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the agent ping at startup")
@click.pass_context
def ask(
    ctx: click.Context,
    question: str,
    context_file: Path | None,
    category: str,
    agents_arg: str | None,
    debate: bool | None,
    rounds: int | None,
    strategy: str | None,
    no_cache: bool,
    no_escalation: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
) -> None:
    """Ask QUESTION to the panel and print the aggregated verdict."""
    _setup_logging(verbose)
    config = _load(ctx)

    panel, unavailable = _determine_panel(config, agents_arg)
    unhealthy: list[str] = []
    if not skip_health_check and panel:
        panel, unhealthy = _check_and_filter_agents(panel)

    task = Task(
        prompt=question,
        context=context_file.read_text(encoding="utf-8") if context_file else None,
        category=category.upper(),
    )
    options = ConsultOptions(
        enable_debate=config.defaults.enable_debate if debate is None else debate,
        debate_rounds=rounds if rounds is not None else config.defaults.debate_rounds,
        enable_cache=config.cache.enabled and not no_cache,
        strategy=strategy or config.defaults.strategy,
        enable_escalation=config.escalation.enabled and not no_escalation,
    )
    cache = ResponseCache(config.cache.dir, config.cache.ttl_sec) if options.enable_cache else None
    effective_output = Path(output_path) if output_path else config.defaults.output_dir

    console.print(
        f"\n[bold cyan]AI Consultants[/bold cyan] - {len(panel)} agents, "
        f"category {task.category}, debate {'on' if options.enable_debate else 'off'}"
    )
    console.print(f"Panel: {', '.join(s.name for s in panel) or '(none)'}")
    console.print(f"Question: [italic]{question[:80]}{'...' if len(question) > 80 else ''}[/italic]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:

        def on_round_complete(record: RoundRecord, result: ConsensusResult) -> None:
            ok = len(record.non_error())
            progress.print(
                f"[green]OK[/green] Round {record.number} complete "
                f"({ok}/{len(record.responses)} answered, consensus {result.score}%)"
            )

        progress.add_task("Consulting agents...", total=None)
        try:
            result = asyncio.run(
                _consult_until_interrupted(
                    task=task,
                    agents=panel,
                    options=options,
                    config=config,
                    adapter_factory=_build_adapter,
                    cache=cache,
                    on_round_complete=on_round_complete,
                )
            )
        except InsufficientAgents as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}. Check API keys in .env or adjust --agents.")
            sys.exit(1)

    # Agents excluded before the consultation still get a status.
    result.agent_statuses.update({name: "skipped" for name in unavailable})
    result.agent_statuses.update({name: "failed" for name in unhealthy})

    for record in result.rounds:
        print_round_summary(record)
    print_consensus(result)

    saved_path = save_to_file(result, effective_output)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


@main.group()
def cache() -> None:
    """Inspect and maintain the response cache."""


def _cache_from(ctx: click.Context) -> ResponseCache:
    _setup_logging(False)
    config = _load(ctx)
    return ResponseCache(config.cache.dir, config.cache.ttl_sec)


@cache.command("stats")
@click.pass_context
def cache_stats(ctx: click.Context) -> None:
    """Show entry counts and size."""
    stats = _cache_from(ctx).stats()
    console.print(f"Cache directory: {stats.cache_dir}")
    console.print(f"Entries: {stats.total_entries} ({stats.expired_entries} expired)")
    console.print(f"Size: {stats.total_size_kb} KB")
    console.print(f"TTL: {stats.ttl_hours:g} hours")


@cache.command("sweep")
@click.pass_context
def cache_sweep(ctx: click.Context) -> None:
    """Evict expired entries."""
    removed = _cache_from(ctx).sweep()
    console.print(f"Removed {removed} expired entries")


@cache.command("clear")
@click.confirmation_option(prompt="Delete every cached response?")
@click.pass_context
def cache_clear(ctx: click.Context) -> None:
    """Delete every entry."""
    removed = _cache_from(ctx).clear()
    console.print(f"Removed {removed} entries")


@main.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Show which agents are configured, available and answering."""
    _setup_logging(False)
    config = _load(ctx)

    adapters: dict[str, AgentAdapter] = {}
    build_errors: dict[str, str] = {}
    for name in sorted(config.available_agents):
        try:
            adapters[name] = _build_adapter(config.agents[name])
        except AgentError as exc:
            build_errors[name] = str(exc)
    results = asyncio.run(run_health_checks(adapters)) if adapters else {}

    table = Table(title="Agents")
    table.add_column("Agent")
    table.add_column("Adapter")
    table.add_column("Model")
    table.add_column("Tier")
    table.add_column("Status")
    healthy = 0
    for name, spec in config.agents.items():
        if not is_available(spec):
            status = "[dim]not configured[/dim]"
        elif name in build_errors:
            status = f"[red]FAIL[/red] {build_errors[name]}"
        elif results.get(name, (False, ""))[0]:
            status = "[green]OK[/green]"
            healthy += 1
        else:
            status = f"[red]FAIL[/red] {results.get(name, (False, 'not checked'))[1][:80]}"
        table.add_row(name, spec.adapter, spec.model, spec.tier, status)
    console.print(table)

    required = max(2, config.defaults.min_agents)
    if healthy < required:
        console.print(f"[bold red]Only {healthy} healthy agent(s); at least {required} are needed.[/bold red]")
        sys.exit(1)
    console.print(f"[green]{healthy} healthy agents[/green]")


if __name__ == "__main__":
    main()
