"""
cli.py - interactive demo shell for the completion engine
Features:
- Runs commands in a local bash subprocess that stands in for a remote session
- Shows ranked completions for what you typed (Rich table, colour per source)
- Pick a suggestion by number or run the line as typed; every run is learned from
- Slash commands for weights, stats, history, rules and rollbacks
"""

import json
import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

# ui styling with Rich
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from shell_autocompleter.core.autocompleter import ShellAutocompleter
from shell_autocompleter.core.errors import ConfigError, EngineNotReady
from shell_autocompleter.core.types import CompletionSuggestion, SessionState, SuggestionSource
from shell_autocompleter.utils.config_manager import Config
from shell_autocompleter.utils.logger_utils import DEFAULT_LOG_PATH, configure_logging

logger = logging.getLogger(__name__)

console = Console()

SOURCE_STYLE = {
    SuggestionSource.HISTORY: "green",
    SuggestionSource.HEURISTIC: "cyan",
    SuggestionSource.REMOTE_PROBE: "magenta",
}

LOCAL_SESSION_ID = "local"


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class LocalShellSession:
    """RemoteSession over a local bash, tracking its own working directory."""

    supports_concurrent = True

    def __init__(self, cwd: Optional[str] = None, shell: str = "bash"):
        self.cwd = os.path.abspath(cwd or os.getcwd())
        self.shell = shell
        self._lock = threading.Lock()

    def execute(self, session_id: str, command: str, timeout: float) -> CommandResult:
        try:
            proc = subprocess.run([self.shell, "-c", command], cwd=self.cwd, capture_output=True,
                                  text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            raise TimeoutError(f"{command!r} timed out after {timeout}s") from e
        return CommandResult(proc.stdout, proc.stderr, proc.returncode)

    def current_working_directory(self, session_id: str) -> str:
        with self._lock:
            return self.cwd

    def environment_variables(self, session_id: str) -> Dict[str, str]:
        return dict(os.environ)

    def run_user_command(self, command: str, timeout: float = 120.0) -> CommandResult:
        """Run a command typed by the user; `cd` changes the tracked directory."""
        parts = command.strip().split(maxsplit=1)
        if parts and parts[0] == "cd":
            target = os.path.expanduser(parts[1].strip("'\"") if len(parts) > 1 else "~")
            path = os.path.abspath(os.path.join(self.cwd, target))
            if not os.path.exists(path):
                return CommandResult(stderr=f"cd: {target}: No such file or directory", exit_code=1)
            if not os.path.isdir(path):
                return CommandResult(stderr=f"cd: {target}: Not a directory", exit_code=1)
            with self._lock:
                self.cwd = path
            return CommandResult()
        try:
            return self.execute(LOCAL_SESSION_ID, command, timeout)
        except TimeoutError as e:
            return CommandResult(stderr=str(e), exit_code=124)


class CLI:
    """Prompt loop: suggest -> pick or run -> learn."""

    def __init__(self, config_path: str = "config.json"):
        self.cfg = Config(config_path)
        configure_logging(self.cfg.get("log_level", "INFO"), path=DEFAULT_LOG_PATH, console=False)
        self.session = LocalShellSession()
        self.engine = ShellAutocompleter(self.session, **self.cfg.as_engine_kwargs())
        self.running = True

    def _state(self) -> SessionState:
        return SessionState(session_id=LOCAL_SESSION_ID, cwd=self.session.cwd)

    def run(self) -> None:
        console.rule("[bold magenta]Shell Autocompleter[/bold magenta]")
        with console.status("[cyan]Opening completion store...[/cyan]"):
            try:
                if not self.engine.wait_ready(timeout=30):
                    console.print("[red]Engine did not become ready in time.[/red]")
                    return
            except EngineNotReady as e:
                console.print(f"[red]{e}[/red]")
                return
        console.print("[cyan]Type part of a command to see completions. Prefix with ! to run it directly.[/cyan]")
        console.print("Commands: /quit /weights /preset NAME /set KEY VALUE /stats /history /rules "
                      "/versions /analyze /rollback N\n")

        while self.running:
            try:
                fragment = Prompt.ask(f"[green]{self._short_cwd()}[/green] $", default="")
                if not fragment:
                    continue
                if fragment.startswith("/"):
                    self._handle_command(fragment)
                    continue
                if fragment.startswith("!"):
                    self._execute(fragment[1:].strip())
                    continue
                self._process_input(fragment)
            except (EOFError, KeyboardInterrupt):
                self._exit()
                break

    def _short_cwd(self) -> str:
        home = os.path.expanduser("~")
        cwd = self.session.cwd
        return "~" + cwd[len(home):] if cwd.startswith(home) else cwd

    # COMMAND HANDLING -----------------------------------------------------------
    def _handle_command(self, cmd: str) -> None:
        name, _, arg = cmd.partition(" ")
        arg = arg.strip()
        if name == "/quit":
            self._exit()
        elif name == "/weights":
            self._show_weights()
        elif name == "/preset":
            self.engine.ranker.set_weights(self.cfg.weights(), preset=arg or "balanced")
            self.engine.cache.clear()
            self._show_weights()
        elif name == "/set":
            self._set_option(arg)
        elif name == "/stats":
            console.print(Panel(json.dumps(self.engine.stats(), indent=2, default=str), title="Engine Stats",
                                border_style="cyan"))
        elif name == "/history":
            self._show_history()
        elif name == "/rules":
            self._show_rules()
        elif name == "/versions":
            self._show_versions()
        elif name == "/analyze":
            summary = self.engine.scheduler.trigger_analysis()
            console.print(f"[green]Analysis:[/green] {summary}" if summary else "[yellow]Analysis skipped.[/yellow]")
        elif name == "/rollback":
            self._rollback(arg)
        else:
            console.print(f"[red]Unknown command:[/red] {cmd}")

    def _set_option(self, arg: str) -> None:
        key, _, value = arg.partition(" ")
        try:
            self.cfg.set(key, value)
        except ConfigError as e:
            console.print(f"[red]{e}[/red]")
            return
        if key in ("weights", "ranker_preset"):
            self.engine.ranker.set_weights(self.cfg.weights(), preset=self.cfg.get("ranker_preset"))
            self.engine.cache.clear()
        console.print(f"[green]{key}[/green] = {self.cfg.get(key)!r} (some options apply on restart)")

    # CORE INPUT PROCESSING ---------------------------------------------------------------
    def _process_input(self, fragment: str) -> None:
        suggestions = self.engine.get_suggestions(fragment, len(fragment), self._state())
        if not suggestions:
            console.print("[dim](no suggestions)[/dim]")
        else:
            self._display_suggestions(suggestions)

        chosen = Prompt.ask("Pick # to run / Enter runs as typed / n to skip", default="")
        if chosen.lower() == "n":
            self.engine.clear_suggestions()
            return
        if chosen.isdigit() and 1 <= int(chosen) <= len(suggestions):
            command = self.engine.accept_suggestion(int(chosen) - 1)
            console.print(f"[green]Accepted:[/green] {command}")
        else:
            self.engine.clear_suggestions()
            command = fragment
        if command:
            self._execute(command)

    def _execute(self, command: str) -> None:
        if not command:
            return
        result = self.session.run_user_command(command)
        if result.stdout:
            console.print(Text(result.stdout.rstrip("\n")))
        if result.stderr:
            console.print(Text(result.stderr.rstrip("\n"), style="red"))
        outputs = [line for line in (result.stdout + result.stderr).splitlines() if line.strip()]
        self.engine.record_command_execution(command, outputs, result.exit_code, cwd=self.session.cwd)

    # DISPLAY -------------------------------------------------------------------------------
    def _display_suggestions(self, suggestions: List[CompletionSuggestion]) -> None:
        table = Table(title="Completions", box=box.SIMPLE, show_edge=False)
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Command", style="bold")
        table.add_column("Score", justify="right", style="magenta")
        table.add_column("Source", justify="left", style="dim")
        for i, s in enumerate(suggestions, 1):
            table.add_row(str(i), Text(s.full_command, style=SOURCE_STYLE.get(s.source, "yellow")),
                          f"{s.score:.3f}", s.source.value)
        console.print(table)

    def _show_weights(self) -> None:
        r = self.engine.ranker
        body = "\n".join(f"{k}: {v:.3f}" for k, v in r.weights.items())
        console.print(Panel.fit(body, title=f"Weights ({r.preset})", border_style="cyan"))

    def _show_history(self) -> None:
        table = Table(title="Recent Commands", box=box.MINIMAL)
        table.add_column("Command")
        table.add_column("Freq", justify="right")
        table.add_column("OK")
        for rec in self.engine.history.recent(20):
            table.add_row(rec.command, str(rec.frequency), "yes" if rec.success else "[red]no[/red]")
        console.print(table)

    def _show_rules(self) -> None:
        table = Table(title="Mined Rules", box=box.MINIMAL)
        for col in ("Type", "Pattern", "Weight", "Conf", "Used", "Adopted", "v"):
            table.add_column(col)
        for rule in self.engine.rules.get_rules():
            p = rule.performance
            table.add_row(rule.type.value, rule.pattern, f"{rule.weight:.2f}", f"{rule.confidence:.2f}",
                          str(p.usage_count), f"{p.adoption_rate:.2f}", str(rule.version))
        console.print(table)

    def _show_versions(self) -> None:
        table = Table(title="Rule Versions", box=box.MINIMAL)
        table.add_column("Version")
        table.add_column("Status")
        table.add_column("Changes", justify="right")
        table.add_column("Created")
        for v in self.engine.scheduler.versions.history(20):
            table.add_row(str(v.version), v.status.value, str(len(v.changes)), v.created_at.strftime("%Y-%m-%d %H:%M"))
        console.print(table)

    def _rollback(self, arg: str) -> None:
        if not arg.isdigit():
            console.print("[red]Usage:[/red] /rollback VERSION")
            return
        try:
            new_version = self.engine.scheduler.rollback(int(arg))
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            return
        console.print(f"[yellow]Rolled back to v{arg} as v{new_version}.[/yellow]")

    # EXIT ------------------------------------------------------------------------
    def _exit(self) -> None:
        console.rule("[red]Exiting[/red]")
        self.engine.shutdown()
        self.running = False


def main() -> None:
    cli = CLI()
    cli.engine.start()
    cli.run()


if __name__ == "__main__":
    main()
