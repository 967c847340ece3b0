"""CLI entrypoints for repoaudit commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

from .config import PROVIDER_NAMES, ConfigError, load_config, resolve_provider
from .fetcher import FetchError, parse_repo_url
from .logging import configure_logging
from .pipeline import AuditError, Auditor


def _add_verbose_option(
    parser: argparse.ArgumentParser, *, suppress_default: bool = False
) -> None:
    kwargs: dict[str, object] = {
        "action": "store_true",
        "help": "Increase log verbosity for troubleshooting.",
    }
    if suppress_default:
        kwargs["default"] = argparse.SUPPRESS
    else:
        kwargs["default"] = False
    parser.add_argument(
        "-v",
        "--verbose",
        **kwargs,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repoaudit",
        description="Audit a GitHub repository with heuristic rules and model-driven analyzers.",
    )
    _add_verbose_option(parser)
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to .repoaudit.yml or the directory containing it.",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write detailed logs to this file.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser(
        "scan",
        help="Audit a repository and print the report.",
    )
    _add_verbose_option(scan_parser, suppress_default=True)
    scan_parser.add_argument("repo_url", help="GitHub URL, optionally with /tree/<ref>.")
    scan_parser.add_argument("--ref", default=None, help="Branch, tag or commit to audit.")
    scan_parser.add_argument(
        "--provider",
        choices=PROVIDER_NAMES,
        default=None,
        help="Inference gateway to use (defaults to the configured provider).",
    )
    scan_parser.add_argument("--model", default=None, help="Model identifier override.")
    scan_parser.add_argument(
        "--token",
        default=None,
        help="GitHub token for private repositories (defaults to GITHUB_TOKEN).",
    )
    scan_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Ignore cached results for this revision.",
    )
    scan_parser.add_argument(
        "--format",
        choices=("markdown", "json"),
        default="markdown",
        help="Output format for the report.",
    )
    scan_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the report to this file instead of stdout.",
    )

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the HTTP service.",
    )
    _add_verbose_option(serve_parser, suppress_default=True)
    serve_parser.add_argument("--host", default="0.0.0.0", help="Interface to bind.")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on.")

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint for repoaudit commands."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        verbose=bool(args.verbose),
        log_file=args.log_file,
        detailed=args.command == "serve",
    )

    if args.command == "scan":
        _run_scan(parser, args)
    elif args.command == "serve":
        from .service import run_service

        run_service(host=args.host, port=args.port)
    else:  # pragma: no cover - argparse enforces choices
        parser.exit(1, "Unknown command\n")


def _run_scan(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    try:
        repo = parse_repo_url(args.repo_url, args.ref)
    except ValueError as exc:
        parser.exit(2, f"{exc}: {args.repo_url}\n")

    try:
        config = load_config(args.config)
        settings = config.provider
        if args.provider:
            settings = replace(settings, name=args.provider, model=None)
        provider = resolve_provider(settings, args.model)
        auditor = Auditor(config)
    except (ConfigError, ValueError) as exc:
        parser.exit(1, f"{exc}\n")

    try:
        outcome = asyncio.run(
            auditor.audit_repository(
                repo,
                token=args.token,
                provider=provider,
                force_refresh=bool(args.refresh),
            )
        )
    except FetchError as exc:
        parser.exit(1, f"repoaudit scan failed to fetch {repo.slug}: {exc}\n")
    except AuditError as exc:
        parser.exit(1, f"repoaudit scan failed: {exc}\nRun with --verbose for more details.\n")

    if args.format == "json":
        payload = outcome.report.to_dict()
        payload["from_cache"] = outcome.from_cache
        rendered = json.dumps(payload, indent=2) + "\n"
    else:
        rendered = outcome.report.rendered_summary

    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered, encoding="utf-8")
        suffix = " (cached)" if outcome.from_cache else ""
        print(f"Report written to {_relativize(args.output)}{suffix}")
    else:
        sys.stdout.write(rendered)


def _relativize(path: Path) -> str:
    try:
        return str(path.resolve().relative_to(Path.cwd()))
    except ValueError:
        return str(path)


if __name__ == "__main__":
    main(sys.argv[1:])
