"""
Main CLI application for miniagent.

Usage:
    miniagent chat [--config PATH]
    miniagent run PROMPT [--config PATH]
    miniagent check [--config PATH]
    miniagent config show
    miniagent version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from miniagent import __version__
from miniagent.config import MiniAgentConfig, load_config

app = typer.Typer(name="miniagent", help="Streaming multi-provider agent")
config_app = typer.Typer(help="Configuration management")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path(explicit: Path | None = None) -> Path | None:
    """Find config file in standard locations."""
    if explicit is not None:
        return explicit
    candidates = [
        Path.cwd() / "miniagent.yaml",
        Path.cwd() / "config" / "config.yaml",
        Path.home() / ".config" / "miniagent" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def _load(config_path: Path | None) -> MiniAgentConfig:
    try:
        return load_config(_get_config_path(config_path))
    except Exception as e:
        console.print(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)


def _build_agent(cfg: MiniAgentConfig):
    """Wire up client, agent and output for a run."""
    from miniagent.cli.output import OutputFormatter
    from miniagent.errors import UnsupportedProviderError
    from miniagent.llm.client import LLMClient
    from miniagent.orchestrator.core import Agent

    try:
        client = LLMClient.from_config(cfg.llm)
    except UnsupportedProviderError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    formatter = OutputFormatter(console)
    agent = Agent(
        llm_client=client,
        system_prompt=cfg.agent.load_system_prompt(),
        max_steps=cfg.agent.max_steps,
        workspace_dir=cfg.agent.workspace_dir,
        token_limit=cfg.agent.token_limit,
        tool_timeout=float(cfg.agent.tool_timeout_seconds),
        stream_callback=formatter.on_chunk,
        tool_result_callback=formatter.on_tool_result,
    )
    return agent


async def _run_once(agent, prompt: str) -> str:
    agent.add_user_message(prompt)
    return await agent.run()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

ConfigOption = typer.Option(None, "--config", "-c", help="Path to YAML config")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Debug logging")


@app.command()
def chat(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Start an interactive chat session."""
    _setup_logging(verbose)
    cfg = _load(config)
    agent = _build_agent(cfg)

    console.print(
        f"[bold]miniagent[/bold] {cfg.llm.provider}/{cfg.llm.model}\n"
        "[dim]Type /clear to reset history, /quit to exit.[/dim]\n"
    )

    async def _loop():
        while True:
            try:
                user_input = await asyncio.get_event_loop().run_in_executor(
                    None, lambda: input("you> ").strip()
                )
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye.[/dim]")
                return

            if not user_input:
                continue
            if user_input == "/quit":
                console.print("[dim]Goodbye.[/dim]")
                return
            if user_input == "/clear":
                removed = agent.clear_history_keep_system()
                console.print(f"[dim]Cleared {removed} messages.[/dim]")
                continue

            console.print("[dim]assistant>[/dim] ", end="")
            try:
                await _run_once(agent, user_input)
            except Exception as e:
                console.print(f"\n[red]Error:[/red] {e}")

    asyncio.run(_loop())


@app.command()
def run(
    prompt: str = typer.Argument(..., help="Task for the agent"),
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Run a single task and exit."""
    _setup_logging(verbose)
    agent = _build_agent(_load(config))
    try:
        asyncio.run(_run_once(agent, prompt))
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def check(
    config: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
):
    """Check that the configured backend answers."""
    from miniagent.llm.client import LLMClient

    _setup_logging(verbose)
    cfg = _load(config)
    try:
        client = LLMClient.from_config(cfg.llm)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    ok = asyncio.run(client.check_connection())
    if ok:
        console.print(f"[green]Connected[/green] to {client.api_base} ({cfg.llm.provider}/{cfg.llm.model})")
    else:
        console.print(f"[red]Connection failed[/red] for {client.api_base}")
        raise typer.Exit(1)


@config_app.command("show")
def config_show(config: Optional[Path] = ConfigOption):
    """Show effective config."""
    from miniagent.cli.output import OutputFormatter

    cfg = _load(config)
    OutputFormatter(console).format_config(cfg.to_dict())


@app.command()
def version():
    """Show version."""
    console.print(f"miniagent v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()
