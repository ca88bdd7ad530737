"""Terminal and JSON rendering for CLI results."""
from __future__ import annotations

import json
import sys
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .errors import ResumerError
from .models import CanonicalSession, SessionSummary
from .normalize import format_timestamp, role_label
from .pipeline import ConversionReport
from .validation import ValidationReport


def stdout_console() -> Console:
    return Console(highlight=False, markup=False, soft_wrap=True)


def stderr_console() -> Console:
    return Console(stderr=True, highlight=False, markup=False, soft_wrap=True)


def emit_json(payload: Any) -> None:
    """Write ``payload`` to stdout as a single JSON document."""
    sys.stdout.write(json.dumps(payload, indent=2, ensure_ascii=False, default=str))
    sys.stdout.write("\n")
    sys.stdout.flush()


def _when(ms: int | None) -> str:
    return format_timestamp(ms) if ms is not None else "-"


def warning_line(warning: str) -> Text:
    return Text.assemble(("warning ", "yellow"), warning)


def render_error(console: Console, error: ResumerError) -> None:
    console.print(
        Text.assemble(
            ("Error ", "bold red"),
            (f"[{error.error_type}/{error.code}] ", "red"),
            str(error),
        )
    )
    payload = error.to_dict()
    for candidate in payload.get("candidates", []):
        console.print(f"  {candidate['provider']}: {candidate['path']}")
    for finding in payload.get("findings", []):
        console.print(f"  - {finding}")


def render_report(report: ConversionReport) -> None:
    """Human-readable summary of a conversion."""
    out = stdout_console()
    if report.error is not None:
        err = stderr_console()
        render_error(err, report.error)
        for warning in report.warnings:
            err.print(warning_line(warning))
        if report.written_paths:
            err.print("Files were left on disk:")
            for path in report.written_paths:
                err.print(f"  {path}")
        return

    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column()
    grid.add_row("Source", f"{report.source_provider} {report.source_session_id}")
    grid.add_row("Target", f"{report.target_provider} {report.target_session_id}")
    if report.source_path is not None:
        grid.add_row("Read from", str(report.source_path))
    if report.written_paths is None:
        grid.add_row("Written", "nothing (dry run)")
    else:
        for i, path in enumerate(report.written_paths):
            grid.add_row("Written" if i == 0 else "", str(path))
    for i, path in enumerate(report.backup_paths):
        grid.add_row("Backup" if i == 0 else "", str(path))
    if report.verified is not None:
        grid.add_row("Verified", "yes" if report.verified else "no")

    title = "Dry run" if report.dry_run else "Converted"
    out.print(Panel(grid, title=title, expand=False))
    for warning in report.warnings:
        out.print(warning_line(warning))
    if report.resume_command:
        out.print(Text.assemble(("Resume with: ", "bold"), (report.resume_command, "cyan")))


def render_sessions(summaries: list[SessionSummary]) -> None:
    out = stdout_console()
    if not summaries:
        out.print("No sessions found.")
        return
    table = Table(show_lines=False)
    table.add_column("Provider", style="magenta", no_wrap=True)
    table.add_column("Session ID", no_wrap=True)
    table.add_column("Msgs", justify="right")
    table.add_column("Last activity", no_wrap=True)
    table.add_column("Workspace")
    table.add_column("Title")
    for s in summaries:
        table.add_row(
            s.provider,
            s.session_id,
            str(s.message_count),
            _when(s.ended_at or s.started_at),
            str(s.workspace) if s.workspace else "-",
            s.title or "",
        )
    out.print(table)


def session_info_dict(session: CanonicalSession, validation: ValidationReport) -> dict[str, Any]:
    roles: dict[str, int] = {}
    for message in session.messages:
        label = role_label(message)
        roles[label] = roles.get(label, 0) + 1
    return {
        "provider": session.provider_slug,
        "session_id": session.session_id,
        "path": str(session.source_path) if session.source_path else None,
        "workspace": str(session.workspace) if session.workspace else None,
        "title": session.title,
        "model": session.model_name,
        "messages": len(session.messages),
        "roles": roles,
        "tool_calls": sum(len(m.tool_calls) for m in session.messages),
        "started_at": session.started_at,
        "ended_at": session.ended_at,
        "records": session.stats.total_records,
        "skipped_records": session.stats.skipped_records,
        "findings": [
            {"severity": f.severity.value, "code": f.code, "message": f.message}
            for f in validation.findings
        ],
    }


def render_session_info(session: CanonicalSession, validation: ValidationReport, verbose: bool = False) -> None:
    out = stdout_console()
    info = session_info_dict(session, validation)
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style="bold")
    grid.add_column()
    grid.add_row("Provider", info["provider"])
    grid.add_row("Session ID", info["session_id"])
    grid.add_row("Path", info["path"] or "-")
    grid.add_row("Workspace", info["workspace"] or "-")
    grid.add_row("Title", info["title"] or "-")
    grid.add_row("Model", info["model"] or "-")
    grid.add_row("Messages", ", ".join(f"{k} {v}" for k, v in sorted(info["roles"].items())) or "0")
    grid.add_row("Tool calls", str(info["tool_calls"]))
    grid.add_row("Started", _when(session.started_at))
    grid.add_row("Ended", _when(session.ended_at))
    out.print(Panel(grid, title="Session", expand=False))

    for finding in validation.errors:
        out.print(Text.assemble(("error ", "red"), str(finding)))
    for finding in validation.visible(verbose):
        colour = "yellow" if finding.severity.value == "warning" else "dim"
        out.print(Text.assemble((f"{finding.severity.value} ", colour), str(finding)))


def render_providers(rows: list[dict[str, Any]]) -> None:
    out = stdout_console()
    table = Table()
    table.add_column("Alias", style="bold", no_wrap=True)
    table.add_column("Provider", no_wrap=True)
    table.add_column("Installed", justify="center")
    table.add_column("Home")
    table.add_column("Env var", no_wrap=True)
    for row in rows:
        table.add_row(
            row["alias"],
            row["name"],
            Text("yes", style="green") if row["installed"] else Text("no", style="red"),
            row["home"],
            row["env_var"],
        )
    out.print(table)
