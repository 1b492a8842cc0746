"""Command line interface for site_uploader."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

from .cli_progress import BatchProgressDisplay, render_configuration_summary
from .errors import DiscoveryFailure, UploaderError
from .models import COMPRESSION_PRESETS, SourceFile, UploadConfig
from .orchestrator import DropPayload, DropZone, UploadOrchestrator, UploadSession
from .services.auth import StaticAuthProvider


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug or --log-level is provided.
    Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent or (not debug and not log_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        env_level = os.getenv("LOG_LEVEL")
        level = getattr(logging, (env_level or "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


async def _discover(sources: Sequence[Path]) -> List[SourceFile]:
    """Run the sources through a drop zone, as a drag-and-drop would."""
    zone = DropZone()
    dropped: List[SourceFile] = []
    errors: List[DiscoveryFailure] = []

    with zone.subscribe(dropped.extend), zone.on_error(errors.append):
        result = await zone.drop(DropPayload.from_paths(sources))

    if errors:
        raise CLIError(str(errors[0]))
    if result is not None and result.rejected:
        print(f"Ignoring {len(result.rejected)} unsupported file(s)", file=sys.stderr)
    return dropped


async def _run_upload(
    sources: Sequence[Path],
    preset: str,
    compress: bool,
    site_id: Optional[str],
    labels: Optional[List[str]],
    max_parallel: Optional[int],
    user_id: Optional[str],
) -> int:
    base_url = os.getenv("SUPABASE_URL")
    if not base_url:
        raise CLIError("SUPABASE_URL environment variable is not set")
    api_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY")
    if not api_key:
        raise CLIError("SUPABASE_ANON_KEY environment variable is not set")
    access_token = os.getenv("SUPABASE_ACCESS_TOKEN")
    if not access_token and not user_id:
        raise CLIError("set SUPABASE_ACCESS_TOKEN or pass --user-id")

    files = await _discover(sources)
    if not files:
        print("No valid images found", file=sys.stderr)
        return 1

    try:
        config = UploadConfig.from_env(max_parallel=max_parallel)
    except ValueError as exc:
        raise CLIError(str(exc)) from exc

    auth = StaticAuthProvider(user_id) if user_id else None
    display = BatchProgressDisplay(total=len(files))

    def attach(session: UploadSession) -> None:
        session.on_start(display.on_start)
        session.on_file_status(display.on_file_status)
        session.on_progress(display.on_progress)
        session.on_finish(display.on_finish)
        session.on_error(display.on_error)

    async with UploadOrchestrator(
        base_url,
        api_key,
        access_token=access_token,
        config=config,
        auth=auth,
    ) as orchestrator:
        session = await orchestrator.upload(
            files,
            preset=preset,
            compress=compress,
            site_id=site_id,
            labels=labels,
            on_session=attach,
        )

    summary = session.summary
    return 0 if summary is not None and summary.failed == 0 else 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="site-up",
        description="Compress and upload site photos from files or folders.",
    )
    parser.add_argument("sources", nargs="*", type=Path, help="Image files or folders")
    parser.add_argument(
        "-p",
        "--preset",
        default=os.getenv("SITE_UPLOADER_PRESET", "medium"),
        choices=sorted(COMPRESSION_PRESETS),
        help="Compression preset (default: medium)",
    )
    parser.add_argument(
        "--no-compress",
        action="store_true",
        help="Upload originals without compression",
    )
    parser.add_argument("-s", "--site-id", default=None, help="Attach observations to this site")
    parser.add_argument(
        "-l",
        "--label",
        dest="labels",
        action="append",
        default=None,
        help="Label for created observations (repeatable)",
    )
    parser.add_argument(
        "-j",
        "--max-parallel",
        type=int,
        default=None,
        help="Maximum concurrent compress+upload pipelines (default 4)",
    )
    parser.add_argument(
        "--user-id",
        default=os.getenv("SITE_UPLOADER_USER_ID"),
        help="Upload as this user id instead of resolving SUPABASE_ACCESS_TOKEN",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="site-up (from site_uploader)",
    )
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    # .env is loaded before parsing so env-backed defaults pick it up
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--env-file", type=Path, default=None)
    pre_args, _ = pre_parser.parse_known_args(argv)

    used_env_file = pre_args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    parser = _build_parser()
    args = parser.parse_args(argv)

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if not args.sources:
        parser.print_help()
        return 0

    sources = [Path(s).expanduser() for s in args.sources]
    missing = [s for s in sources if not s.exists()]
    if missing:
        print(f"ERROR: source does not exist: {missing[0]}", file=sys.stderr)
        return 1

    if args.max_parallel is not None and args.max_parallel < 1:
        print("ERROR: --max-parallel must be at least 1", file=sys.stderr)
        return 1

    render_configuration_summary(
        {
            "Sources": ", ".join(str(s) for s in sources),
            "Preset": "original (no compression)" if args.no_compress else args.preset,
            "Site": args.site_id or "-",
            "Labels": ", ".join(args.labels) if args.labels else "-",
            "Max Parallel": args.max_parallel or "(default)",
            "Backend": os.getenv("SUPABASE_URL") or "(missing)",
            "User": args.user_id or ("(from access token)" if os.getenv("SUPABASE_ACCESS_TOKEN") else "(missing)"),
            "Env File": str(used_env_file) if used_env_file else "-",
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run_upload(
                sources=sources,
                preset=args.preset,
                compress=not args.no_compress,
                site_id=args.site_id,
                labels=args.labels,
                max_parallel=args.max_parallel,
                user_id=args.user_id,
            )
        )
    except (CLIError, UploaderError, ValueError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
