"""Rich console output and markdown file save for debate results."""

import logging
import re
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from council.models import (
    CHAIRPERSON_ID,
    SYSTEM_ID,
    USER_ID,
    Agent,
    DebateState,
    Message,
    MessageKind,
    TokenUsage,
)

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def author_label(message: Message, agents: Sequence[Agent]) -> str:
    """Display name for a transcript author."""
    if message.is_guest:
        return f"Guest Expert ({message.guest_role or 'Guest'})"
    if message.agent_id == USER_ID:
        return "You"
    if message.agent_id == SYSTEM_ID:
        return "System"
    if message.agent_id == CHAIRPERSON_ID:
        return "Chairperson"
    agent = next((a for a in agents if a.id == message.agent_id), None)
    return agent.name if agent else message.agent_id


def _border(message: Message) -> str:
    if message.kind == MessageKind.ERROR:
        return "red"
    if message.kind == MessageKind.VOTE:
        return "magenta"
    if message.is_guest:
        return "yellow"
    if message.agent_id in (SYSTEM_ID, CHAIRPERSON_ID):
        return "cyan"
    if message.agent_id == USER_ID:
        return "green"
    return "dim"


def print_message(message: Message, agents: Sequence[Agent]) -> None:
    """Print one transcript entry as a panel."""
    body = Markdown(message.content) if message.kind == MessageKind.TEXT else Text(message.content)
    console.print(
        Panel(
            body,
            title=f"[bold]{author_label(message, agents)}[/bold]",
            subtitle=message.phase.value.lower(),
            border_style=_border(message),
        )
    )
    for citation in message.citations:
        console.print(Text(f"  source: {citation.title} <{citation.uri}>", style="dim"))


def print_fallacies(transcript: Sequence[Message], agents: Sequence[Agent]) -> None:
    """List the fallacy findings attached to the transcript, if any."""
    flagged = [m for m in transcript if m.fallacy is not None]
    if not flagged:
        return
    console.print(Rule("[bold yellow]Fallacy Check[/bold yellow]"))
    for message in flagged:
        style = "red" if message.fallacy.severity == "major" else "yellow"
        console.print(
            Text(
                f"{author_label(message, agents)}: {message.fallacy.name} "
                f"({message.fallacy.severity}) - {message.fallacy.reason}",
                style=style,
            )
        )


def print_verdict(state: DebateState, agents: Sequence[Agent]) -> None:
    """Print the final verdict using Rich markdown."""
    verdict = state.final_verdict
    if verdict is None:
        console.print(Text("No verdict was reached.", style="dim"))
        return

    names = {a.id: a.name for a in agents}
    console.print(Rule("[bold green]Council Verdict[/bold green]"))
    console.print(Text(f"Winner: {names.get(verdict.winner_id, verdict.winner_id)}", style="bold"))
    console.print(Markdown(verdict.summary))
    if verdict.key_takeaways:
        console.print(Markdown("\n".join(f"- {t}" for t in verdict.key_takeaways)))

    if verdict.votes:
        table = Table(title="Votes")
        table.add_column("Voter")
        table.add_column("Vote")
        table.add_column("Score", justify="right")
        table.add_column("Reason")
        for vote in verdict.votes:
            table.add_row(
                names.get(vote.voter_id, vote.voter_id),
                names.get(vote.target_agent_id, vote.target_agent_id),
                f"{vote.score:g}",
                vote.reason,
            )
        console.print(table)


def print_usage(usage: TokenUsage) -> None:
    console.print(
        Text(
            f"Tokens: {usage.input_tokens} in / {usage.output_tokens} out | "
            f"Estimated cost: ${usage.total_cost:.4f}",
            style="dim",
        )
    )


def save_to_file(state: DebateState, agents: Sequence[Agent], output_dir: Path) -> Path:
    """Save the full debate transcript as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(state.topic)}.md"
    names = {a.id: a.name for a in agents}

    lines: list[str] = [
        f"# LLM Council Debate: {state.topic[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Council:** {', '.join(a.name for a in agents)}",
        f"**Mode:** {state.mode.value.lower()}",
        f"**Rounds:** {state.current_round}",
        f"**Tokens:** {state.token_usage.input_tokens} in / {state.token_usage.output_tokens} out",
        f"**Estimated cost:** ${state.token_usage.total_cost:.4f}",
        "",
        "---",
        "",
    ]

    if state.context_documents:
        lines += ["## Context", ""]
        for document in state.context_documents:
            lines += [document.content, ""]

    current_phase = None
    for message in state.transcript:
        if message.phase != current_phase:
            current_phase = message.phase
            lines += [f"## {current_phase.value.title()}", ""]
        lines += [f"### {author_label(message, agents)}", "", message.content, ""]
        if message.citations:
            lines += [f"- [{c.title}]({c.uri})" for c in message.citations]
            lines.append("")
        if message.fallacy is not None:
            lines += [
                f"*Fallacy ({message.fallacy.severity}): {message.fallacy.name} - {message.fallacy.reason}*",
                "",
            ]

    verdict = state.final_verdict
    if verdict is not None:
        lines += [
            f"## Verdict (winner: {names.get(verdict.winner_id, verdict.winner_id)})",
            "",
            verdict.summary,
            "",
        ]
        lines += [f"- {t}" for t in verdict.key_takeaways]
        lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Debate saved to: %s", filepath)
    return filepath
