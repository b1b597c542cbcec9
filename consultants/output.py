"""Rich console summary and JSON result file for consultations."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from consultants.models import AgentResponse, ConsensusResult, ConsultationResult, ResponseStatus, RoundRecord

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_STATUS_STYLES = {
    ResponseStatus.OK: "green",
    ResponseStatus.DEGRADED: "yellow",
    ResponseStatus.EMPTY: "red",
    ResponseStatus.FAILED: "bold red",
}

_LEVEL_STYLES = {
    "unanimous": "bold green",
    "high": "green",
    "medium": "yellow",
    "low": "red",
    "none": "bold red",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _summary_preview(response: AgentResponse, words: int = 50) -> str:
    """Return first N words of a response's summary, or its error."""
    if response.is_error:
        return response.error or "(no output)"
    all_words = response.response.summary.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _subtitle(response: AgentResponse) -> str:
    parts = [response.status.value, f"confidence {response.confidence.score}/10"]
    if response.metadata.from_cache:
        parts.append("cached")
    elif not response.is_error:
        parts.append(f"{response.metadata.latency_ms / 1000:.1f}s")
    if response.metadata.escalated:
        parts.append("escalated")
    if response.debate is not None and response.debate.position_changed:
        parts.append("changed position")
    return " | ".join(parts)


def print_round_summary(record: RoundRecord) -> None:
    """Print a brief summary of one round's responses to the console."""
    console.print(Rule(f"[bold cyan]Round {record.number} Summary[/bold cyan]"))
    for resp in record.responses:
        title = f"[bold]{resp.agent}[/bold] ({resp.model})"
        if resp.persona:
            title += f" - {resp.persona}"
        console.print(
            Panel(
                _summary_preview(resp),
                title=title,
                subtitle=_subtitle(resp),
                border_style=_STATUS_STYLES[resp.status],
            )
        )


def print_consensus(result: ConsultationResult) -> None:
    """Print the aggregate verdict: consensus level, confidence and vote tally."""
    final: ConsensusResult = result.consensus
    console.print(Rule("[bold green]Consensus[/bold green]"))
    style = _LEVEL_STYLES.get(final.level, "white")
    console.print(Text(f"Consensus: {final.score}% ({final.level})", style=style))
    console.print(f"Confidence: {final.confidence.display}")
    if final.recommended_approach:
        console.print(
            f"Recommended approach: [bold]{final.recommended_approach}[/bold] "
            f"(weighted score {final.final_weighted_score}/10, strategy {final.strategy})"
        )

    table = Table(title="Approach tally", show_lines=False)
    table.add_column("Approach")
    table.add_column("Votes", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Supporters")
    for tally in final.tally.values():
        table.add_row(tally.approach, str(tally.votes), str(tally.weight), ", ".join(tally.supporters))
    if final.tally:
        console.print(table)

    if final.agreed_topics:
        console.print("[green]Agreed:[/green] " + "; ".join(final.agreed_topics))
    if final.disagreed_topics:
        console.print("[red]Disagreed:[/red] " + "; ".join(final.disagreed_topics))

    statuses = ", ".join(f"{name}={status}" for name, status in result.agent_statuses.items())
    meta = f"Agents: {statuses} | Rounds: {len(result.rounds)} | Duration: {result.duration_sec:.1f}s"
    if result.debate_summary:
        meta += f" | Debate stopped: {result.debate_summary.stop_reason}"
    console.print(Text(meta, style="dim"))
    if result.aborted:
        console.print("[bold yellow]Consultation aborted - partial result[/bold yellow]")


def save_to_file(result: ConsultationResult, output_dir: Path) -> Path:
    """Save the full consultation as a JSON file.

    Args:
        result: The completed (or aborted) consultation.
        output_dir: Directory to save the file in.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = _slug(result.task.prompt)
    filepath = output_dir / f"{timestamp}_{slug or 'consultation'}.json"

    filepath.write_text(json.dumps(result.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Consultation saved to: %s", filepath)
    return filepath
