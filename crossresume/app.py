"""Command-line entry point.

    crossresume resume <target> <session-id> [--dry-run] [--force] [--source S] [--enrich]
    crossresume list [--provider P] [--workspace W] [--limit N] [--sort KEY]
    crossresume info <session-id> [--source S]
    crossresume providers
    crossresume completions <bash|zsh|fish>
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .config import ResolvedConfig
from .discovery import SORT_KEYS, DiscoveryService, SourceHint
from .errors import ResumerError
from .formatters import (
    emit_json,
    render_error,
    render_providers,
    render_report,
    render_session_info,
    render_sessions,
    session_info_dict,
    stderr_console,
)
from .pipeline import ConversionPipeline, ConvertOptions
from .providers.registry import ProviderRegistry, default_registry
from .validation import validate_session

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
COMMANDS = ("resume", "list", "info", "providers", "completions")


def configure_logging(level: str | int) -> None:
    """Route all package logging to a single stderr handler."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    root.addHandler(handler)


def _global_flags(parser: argparse.ArgumentParser, *, suppress: bool) -> None:
    # Subcommands get the same flags with SUPPRESS so a flag given after the
    # command does not reset one given before it.
    default = argparse.SUPPRESS if suppress else False
    parser.add_argument("--json", action="store_true", default=default,
                        help="Print machine-readable JSON to stdout")
    parser.add_argument("--verbose", "-v", action="store_true", default=default,
                        help="Show info findings and INFO logging")
    parser.add_argument("--trace", action="store_true", default=default,
                        help="DEBUG logging, including per-record parse details")
    parser.add_argument("--config", metavar="PATH",
                        default=argparse.SUPPRESS if suppress else None,
                        help="YAML config file (default: $CROSSRESUME_CONFIG or "
                             "~/.config/crossresume/config.yaml)")


def build_parser(registry: ProviderRegistry | None = None) -> argparse.ArgumentParser:
    registry = registry or default_registry()
    aliases = ", ".join(f"{p.alias} ({p.slug})" for p in registry)

    parser = argparse.ArgumentParser(
        prog="crossresume",
        description="Convert coding-agent sessions between providers so they can be resumed.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    _global_flags(parser, suppress=False)

    common = argparse.ArgumentParser(add_help=False)
    _global_flags(common, suppress=True)

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    resume = sub.add_parser(
        "resume", parents=[common],
        help="Convert a session into another provider's format",
        description=f"Providers: {aliases}",
    )
    resume.add_argument("target", help="Target provider alias or slug")
    resume.add_argument("session_id", metavar="session-id", help="Source session id")
    resume.add_argument("--dry-run", action="store_true",
                        help="Read and validate only; write nothing")
    resume.add_argument("--force", action="store_true",
                        help="Overwrite an existing target file (a .bak copy is kept)")
    resume.add_argument("--source", metavar="ALIAS|PATH",
                        help="Source provider alias or explicit session file")
    resume.add_argument("--enrich", action="store_true",
                        help="Prepend a short context exchange to the converted session")

    ls = sub.add_parser("list", parents=[common], help="List sessions across providers")
    ls.add_argument("--provider", metavar="ALIAS", help="Only this provider")
    ls.add_argument("--workspace", metavar="PATH", type=Path,
                    help="Only sessions under this directory")
    ls.add_argument("--limit", type=int, default=50, help="Maximum rows (default: 50, 0 = all)")
    ls.add_argument("--sort", choices=SORT_KEYS, default="date", help="Sort order (default: date)")

    info = sub.add_parser("info", parents=[common], help="Show one session and its validation findings")
    info.add_argument("session_id", metavar="session-id")
    info.add_argument("--source", metavar="ALIAS|PATH",
                      help="Source provider alias or explicit session file")

    sub.add_parser("providers", parents=[common], help="Show supported providers and detection status")

    comp = sub.add_parser("completions", parents=[common], help="Print a shell completion script")
    comp.add_argument("shell", choices=("bash", "zsh", "fish"))
    return parser


def _cmd_resume(args: argparse.Namespace, registry: ProviderRegistry, config: ResolvedConfig) -> int:
    pipeline = ConversionPipeline(registry, config)
    report = pipeline.convert(
        args.target,
        args.session_id,
        ConvertOptions(
            dry_run=args.dry_run,
            force=args.force,
            enrich=args.enrich,
            verbose=args.verbose,
            source=SourceHint.parse(args.source),
        ),
    )
    if args.json:
        emit_json(report.to_dict())
    else:
        render_report(report)
    return report.exit_code


def _cmd_list(args: argparse.Namespace, registry: ProviderRegistry, config: ResolvedConfig) -> int:
    discovery = DiscoveryService(registry, config)
    summaries = discovery.list_sessions(
        provider=args.provider,
        workspace=args.workspace,
        limit=args.limit,
        sort=args.sort,
    )
    if args.json:
        emit_json([s.to_dict() for s in summaries])
    else:
        render_sessions(summaries)
    return 0


def _cmd_info(args: argparse.Namespace, registry: ProviderRegistry, config: ResolvedConfig) -> int:
    discovery = DiscoveryService(registry, config)
    resolved = discovery.resolve(args.session_id, SourceHint.parse(args.source))
    session = resolved.provider.read(resolved.path)
    validation = validate_session(session)
    if args.json:
        emit_json(session_info_dict(session, validation))
    else:
        render_session_info(session, validation, verbose=args.verbose)
    return 0


def provider_rows(registry: ProviderRegistry, config: ResolvedConfig) -> list[dict]:
    rows = []
    for provider in registry:
        home = config.home_for(provider)
        detection = provider.detect(home)
        rows.append({
            "alias": provider.alias,
            "slug": provider.slug,
            "name": provider.name,
            "env_var": provider.env_var,
            "home": str(home),
            "installed": detection.installed,
            "evidence": detection.evidence,
            "resume_command": provider.resume_command("<id>"),
        })
    return rows


def _cmd_providers(args: argparse.Namespace, registry: ProviderRegistry, config: ResolvedConfig) -> int:
    rows = provider_rows(registry, config)
    if args.json:
        emit_json(rows)
    else:
        render_providers(rows)
    return 0


def completion_script(shell: str, registry: ProviderRegistry) -> str:
    """Static completion script covering commands, flags and provider aliases."""
    words = sorted({key for p in registry for key in (p.alias, p.slug)})
    commands = " ".join(COMMANDS)
    providers = " ".join(words)
    if shell == "bash":
        return f"""_crossresume() {{
    local cur prev
    cur="${{COMP_WORDS[COMP_CWORD]}}"
    prev="${{COMP_WORDS[COMP_CWORD-1]}}"
    case "$prev" in
        resume|--source|--provider)
            COMPREPLY=( $(compgen -W "{providers}" -- "$cur") ); return ;;
        completions)
            COMPREPLY=( $(compgen -W "bash zsh fish" -- "$cur") ); return ;;
        --sort)
            COMPREPLY=( $(compgen -W "{' '.join(SORT_KEYS)}" -- "$cur") ); return ;;
    esac
    if [[ $COMP_CWORD -eq 1 ]]; then
        COMPREPLY=( $(compgen -W "{commands} --json --verbose --trace --config" -- "$cur") )
    else
        COMPREPLY=( $(compgen -W "--dry-run --force --source --enrich --json --verbose --trace" -- "$cur") )
    fi
}}
complete -F _crossresume crossresume
"""
    if shell == "zsh":
        return f"""#compdef crossresume
_crossresume() {{
    local -a commands providers
    commands=({commands})
    providers=({providers})
    if (( CURRENT == 2 )); then
        _describe 'command' commands
    elif [[ $words[2] == resume && CURRENT == 3 ]]; then
        _describe 'provider' providers
    elif [[ $words[2] == completions ]]; then
        _values 'shell' bash zsh fish
    else
        _arguments '--dry-run' '--force' '--enrich' '--json' '--verbose' '--trace' \\
            '--source[source provider or file]:source:_files' \\
            '--provider[provider]:provider:({providers})' \\
            '--sort[sort order]:sort:({' '.join(SORT_KEYS)})'
    fi
}}
compdef _crossresume crossresume
"""
    lines = [
        "complete -c crossresume -f",
        f"complete -c crossresume -n '__fish_use_subcommand' -a '{commands}'",
        f"complete -c crossresume -n '__fish_seen_subcommand_from resume' -a '{providers}'",
        "complete -c crossresume -n '__fish_seen_subcommand_from completions' -a 'bash zsh fish'",
        f"complete -c crossresume -l source -a '{providers}' -r",
        f"complete -c crossresume -l provider -a '{providers}' -r",
        f"complete -c crossresume -l sort -a '{' '.join(SORT_KEYS)}' -r",
    ]
    lines += [f"complete -c crossresume -l {flag}" for flag in
              ("dry-run", "force", "enrich", "json", "verbose", "trace", "config")]
    return "\n".join(lines) + "\n"


def _cmd_completions(args: argparse.Namespace, registry: ProviderRegistry, config: ResolvedConfig) -> int:
    sys.stdout.write(completion_script(args.shell, registry))
    return 0


_HANDLERS = {
    "resume": _cmd_resume,
    "list": _cmd_list,
    "info": _cmd_info,
    "providers": _cmd_providers,
    "completions": _cmd_completions,
}


def run(argv: list[str] | None = None, *, environ=None) -> int:
    """Parse ``argv``, execute the command and return the exit code."""
    registry = default_registry()
    args = build_parser(registry).parse_args(argv)

    try:
        config = ResolvedConfig.from_env(
            environ,
            config_path=Path(args.config) if args.config else None,
            registry=registry,
        )
    except ResumerError as exc:
        configure_logging(logging.WARNING)
        return _fail(args, exc)

    if args.trace:
        configure_logging(logging.DEBUG)
    elif args.verbose:
        configure_logging(logging.INFO)
    else:
        configure_logging(config.log_level)
    logger.debug("crossresume %s: command=%s config=%s", __version__, args.command, config.config_path)

    try:
        return _HANDLERS[args.command](args, registry, config)
    except ResumerError as exc:
        return _fail(args, exc)


def _fail(args: argparse.Namespace, exc: ResumerError) -> int:
    logger.debug("%s failed: %s", args.command, exc, exc_info=args.trace)
    if args.json:
        emit_json({"ok": False, "error": exc.to_dict()})
    else:
        render_error(stderr_console(), exc)
    return 1


def main(argv: list[str] | None = None) -> None:
    sys.exit(run(argv))


if __name__ == "__main__":
    main()
