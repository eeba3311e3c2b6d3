"""Click CLI: orchestrates config loading, provider selection, the debate engine, and output."""

import asyncio
import dataclasses
import logging
import os
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from config.config_loader import AppConfig, ProviderConfig, load_config
from council.client import GenerationClient
from council.engine import DebateEngine
from council.fallacy import FallacyAnalyzer
from council.models import Agent, DebateMode, EngineStatus
from council.orchestrator import OrchestratorDecisionModule
from council.output import _slug, print_fallacies, print_message, print_usage, print_verdict, save_to_file
from council.providers.base import GenerationProvider, ProviderError
from council.providers.gemini import GeminiProvider
from council.providers.openrouter import OpenRouterProvider, fetch_openrouter_pricing
from council.search import SearchAugmentationService
from council.session import load_session, save_session
from council.state import DebateStateMachine
from council.turn import TurnExecutor
from council.voting import VotingPipeline

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

PROVIDER_CLASSES: dict[str, type[GenerationProvider]] = {
    "google": GeminiProvider,
    "openrouter": OpenRouterProvider,
}

AUTO_ANSWER = "No preference. Proceed."


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _select_agents(config: AppConfig, agents_arg: str | None) -> list[Agent]:
    """Council members in roster order. --agents picks and orders a subset by id."""
    if not agents_arg:
        return list(config.council)
    by_id = {a.id: a for a in config.council}
    selected = []
    for agent_id in (a.strip() for a in agents_arg.split(",")):
        if agent_id not in by_id:
            raise click.BadParameter(f"Unknown agent '{agent_id}'. Known: {', '.join(by_id)}", param_hint="--agents")
        selected.append(by_id[agent_id])
    return selected


def _provider_config(config: AppConfig, provider: str | None, model: str | None) -> ProviderConfig:
    changes = {}
    if provider:
        changes["name"] = provider
    if model:
        changes["model"] = model
    return dataclasses.replace(config.provider, **changes) if changes else config.provider


async def _build_engine(
    config: AppConfig,
    provider_config: ProviderConfig,
    machine: DebateStateMachine,
    interactive: bool = False,
) -> DebateEngine:
    """Wire provider, client and the four engine collaborators together."""
    provider = PROVIDER_CLASSES[provider_config.name](provider_config)

    published = {}
    search = None
    if not provider.native_search:
        published = await fetch_openrouter_pricing(
            os.environ.get(provider_config.openrouter_api_key_env, ""),
            provider_config.openrouter_base_url,
        )
        if config.search_available:
            search = SearchAugmentationService(provider_config.search_api_key_env)

    client = GenerationClient(
        provider,
        provider_config.model,
        config.pricing,
        retry=config.retry,
        published_prices=published,
        search_augmentation=search is not None,
    )
    debate = config.debate
    persona = config.chairperson.system_prompt
    return DebateEngine(
        machine,
        TurnExecutor(client, search=search, transcript_window=debate.transcript_window),
        OrchestratorDecisionModule(
            client,
            conclude_after_round=debate.conclude_after_round,
            guest_round_limit=debate.guest_round_limit,
            persona=persona,
        ),
        VotingPipeline(client, vote_delay_sec=debate.vote_delay_sec, persona=persona),
        FallacyAnalyzer(client, min_chars=debate.fallacy_min_chars),
        # An interactive terminal blocks on the prompt itself, so only unattended runs auto-decline.
        consultation_timeout_sec=None if interactive else debate.consultation_timeout_sec,
    )


async def _handle_pause(engine: DebateEngine, interactive: bool) -> bool:
    """Resolve a pause that needs a human. Returns False when the debate cannot continue."""
    state = engine.machine.state
    if engine.status == EngineStatus.AWAITING_CONSULTATION:
        if not interactive and engine.consultation_timer_armed:
            await engine.wait_for_consultation()
            return True
        accepted = interactive and click.confirm(
            "The Chairperson would like your input. Respond?", default=False
        )
        engine.respond_to_consultation(accepted)
        return True

    if engine.status == EngineStatus.AWAITING_HUMAN:
        asker = engine.machine.agent(state.thinking_agent_id)
        label = asker.name if asker else "The Chairperson"
        if interactive:
            console.print(f"\n[bold yellow]{label} asks:[/bold yellow] {state.pending_user_question}")
            answer = click.prompt("Your answer", default=AUTO_ANSWER, show_default=False)
        else:
            answer = AUTO_ANSWER
        engine.submit_answer(answer)
        return True

    return False


async def _follow_ups(engine: DebateEngine) -> None:
    while True:
        question = click.prompt(
            "Ask the Chairperson a follow-up (blank to finish)", default="", show_default=False
        ).strip()
        if not question:
            return
        await engine.ask_follow_up(question)


def _install_stop_handler(engine: DebateEngine) -> bool:
    """Make the first Ctrl-C a stop request. A second Ctrl-C interrupts as usual."""
    loop = asyncio.get_running_loop()

    def on_interrupt() -> None:
        loop.remove_signal_handler(signal.SIGINT)
        console.print("\n[yellow]Stop requested: the Council concludes at the end of this turn.[/yellow]")
        engine.request_stop()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except (NotImplementedError, RuntimeError, ValueError):
        logger.debug("Ctrl-C stop handler not available on this platform")
        return False
    return True


async def _run(
    config: AppConfig,
    provider_config: ProviderConfig,
    machine: DebateStateMachine,
    topic: str | None,
    mode: DebateMode,
    rounds: int,
    initial_context: str,
    interactive: bool,
    output_dir: Path,
    session_path: Path,
) -> Path | None:
    engine = await _build_engine(config, provider_config, machine, interactive=interactive)
    if topic is not None:
        engine.start(topic, mode, rounds, initial_context)

    state = machine.state
    console.print(
        f"\n[bold cyan]LLM Council[/bold cyan]: {len(machine.agents)} agents, "
        f"{state.mode.value.lower()} mode, provider {provider_config.name} ({provider_config.model})"
    )
    console.print(f"Topic: [italic]{state.topic[:80]}{'...' if len(state.topic) > 80 else ''}[/italic]\n")

    stop_handler = _install_stop_handler(engine)
    try:
        try:
            while True:
                await engine.run()
                if not await _handle_pause(engine, interactive):
                    break
        finally:
            if stop_handler:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        await engine.wait_for_background()

        if machine.state.final_verdict is not None and interactive:
            print_verdict(machine.state, machine.agents)
            await _follow_ups(engine)
    finally:
        save_session(session_path, machine.snapshot(), machine.agents)

    final = machine.state
    if not interactive:
        print_verdict(final, machine.agents)
    print_fallacies(final.transcript, machine.agents)
    print_usage(final.token_usage)

    if final.final_verdict is None:
        return None
    saved_path = save_to_file(final, machine.agents, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


@click.command()
@click.argument("topic", required=False)
@click.option("--mode", type=click.Choice(["auto", "fixed"]), default=None,
              help="auto: the Chairperson decides when to conclude. fixed: run --rounds rounds.")
@click.option("--rounds", default=None, type=int, help="Maximum rounds in fixed mode (default: from config)")
@click.option("--agents", "agents_arg", default=None, help="Comma-separated agent ids, in speaking order")
@click.option("--context", "context_file", type=click.Path(exists=True, dir_okay=False),
              help="Read background context from a file")
@click.option("--provider", type=click.Choice(["google", "openrouter"]), default=None,
              help="Generation provider (default: from config)")
@click.option("--model", default=None, help="Session default model id (default: from config)")
@click.option("--resume", "resume_path", type=click.Path(exists=True, dir_okay=False),
              help="Resume a saved session snapshot")
@click.option("--session", "session_arg", default=None, help="Where to write the session snapshot")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--no-interactive", "no_interactive", is_flag=True, default=False,
              help="Never prompt: answer agent questions with no preference and decline consultations")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(
    topic: str | None,
    mode: str | None,
    rounds: int | None,
    agents_arg: str | None,
    context_file: str | None,
    provider: str | None,
    model: str | None,
    resume_path: str | None,
    session_arg: str | None,
    output_path: str | None,
    no_interactive: bool,
    verbose: bool,
) -> None:
    """LLM Council -- multi-agent debate with a moderating Chairperson.

    \b
    Examples:
      llm-council "Should cities ban cars from downtown?"
      llm-council "Is nuclear power the answer?" --mode fixed --rounds 2
      llm-council "Remote work" --agents agent-skeptic,agent-optimist --no-interactive
      llm-council "AI regulation" --provider openrouter --model openai/gpt-4o-mini
      llm-council --resume output/ai-regulation.session.json

    Press Ctrl-C once to make the Council conclude after the current turn.
    """
    # Reconfigure stdout/stderr to UTF-8 on Windows so model responses containing
    # Unicode chars (e.g. non-breaking hyphens) don't crash the ANSI render path.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    provider_config = _provider_config(config, provider, model)
    if provider_config.name not in config.available_providers:
        console.print(
            f"[bold red]Error:[/bold red] Provider '{provider_config.name}' has no API key. "
            f"Set {provider_config.api_key_env} in .env."
        )
        sys.exit(1)

    output_dir = Path(output_path) if output_path else config.debate.output_dir

    if resume_path:
        state, roster = load_session(Path(resume_path))
        session_path = Path(session_arg) if session_arg else Path(resume_path)
        topic = None
        initial_context = ""
    elif topic:
        roster = _select_agents(config, agents_arg)
        state = None
        session_path = Path(session_arg) if session_arg else output_dir / f"{_slug(topic)}.session.json"
        initial_context = Path(context_file).read_text(encoding="utf-8") if context_file else ""
    else:
        console.print("[bold red]Error:[/bold red] Provide a TOPIC argument or --resume.")
        sys.exit(1)

    if len(roster) < 2:
        console.print("[bold red]Error:[/bold red] A debate needs at least 2 agents.")
        sys.exit(1)

    machine = DebateStateMachine(roster, state=state, on_message=lambda m: print_message(m, roster))
    effective_mode = DebateMode(mode.upper()) if mode else config.debate.mode
    effective_rounds = rounds if rounds is not None else config.debate.max_rounds

    try:
        asyncio.run(
            _run(
                config=config,
                provider_config=provider_config,
                machine=machine,
                topic=topic,
                mode=effective_mode,
                rounds=effective_rounds,
                initial_context=initial_context,
                interactive=not no_interactive,
                output_dir=output_dir,
                session_path=session_path,
            )
        )
    except ProviderError as exc:
        console.print(f"[bold red]Provider error:[/bold red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
