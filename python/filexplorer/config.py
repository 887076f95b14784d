"""
Runtime settings for the filexplorer server.

Resolution order for every field: explicit keyword override, then the
environment, then the default.

    FILEXPLORER_ROOT=/srv/data FILEXPLORER_PORT=9000 filexplorer-server
"""

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from filexplorer.git_metadata import GIT_COMMAND_TIMEOUT, GIT_MAX_OUTPUT

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4174
DEFAULT_POLL_INTERVAL = 5.0


def _parse_number(env: Mapping[str, str], names: tuple[str, ...], kind, default):
    for name in names:
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        try:
            value = kind(raw.strip())
        except ValueError:
            raise ValueError(f"{name} must be a {kind.__name__}, got {raw!r}") from None
        if value <= 0:
            raise ValueError(f"{name} must be positive, got {raw!r}")
        return value
    return default


def _parse_patterns(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [piece.strip() for piece in raw.split(",") if piece.strip()]


@dataclass
class Settings:
    root: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    db_path: str = ":memory:"
    poll_interval: float = DEFAULT_POLL_INTERVAL
    git_binary: str = "git"
    git_timeout: float = GIT_COMMAND_TIMEOUT
    git_max_output: int = GIT_MAX_OUTPUT
    ignore_patterns: list[str] = field(default_factory=list)
    log_dir: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        """
        Build settings from the environment.

        Keyword overrides that are None fall through to the environment.

        Raises:
            ValueError: a numeric variable doesn't parse or isn't positive
        """
        env = os.environ if env is None else env
        overrides = {k: v for k, v in overrides.items() if v is not None}

        root = overrides.pop("root", None) or env.get("FILEXPLORER_ROOT") or env.get("START_PATH")
        root_path = Path(root).expanduser().resolve() if root else Path.cwd().resolve()

        log_dir = overrides.pop("log_dir", None) or env.get("FILEXPLORER_LOG_DIR")

        settings = cls(
            root=root_path,
            host=env.get("FILEXPLORER_HOST") or DEFAULT_HOST,
            port=_parse_number(env, ("FILEXPLORER_PORT", "PORT"), int, DEFAULT_PORT),
            db_path=env.get("FILEXPLORER_DB") or ":memory:",
            poll_interval=_parse_number(
                env, ("FILEXPLORER_POLL_INTERVAL",), float, DEFAULT_POLL_INTERVAL
            ),
            git_binary=env.get("FILEXPLORER_GIT") or "git",
            ignore_patterns=_parse_patterns(env.get("FILEXPLORER_IGNORE")),
            log_dir=Path(log_dir) if log_dir else Path.cwd() / ".filexplorer" / "logs",
            log_level=(env.get("FILEXPLORER_LOG_LEVEL") or "INFO").upper(),
        )
        for key, value in overrides.items():
            if not hasattr(settings, key):
                raise TypeError(f"Unknown setting: {key}")
            setattr(settings, key, value)
        settings.log_level = settings.log_level.upper()
        return settings


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filexplorer-server",
        description="filexplorer - live filesystem index with search and tags",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Directory to index (default: FILEXPLORER_ROOT, START_PATH, or cwd)",
    )
    parser.add_argument(
        "--host",
        default=None,
        help=f"Host to bind to (default: {DEFAULT_HOST}, or FILEXPLORER_HOST env var)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help=f"Port to listen on (default: {DEFAULT_PORT}, or FILEXPLORER_PORT env var)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Polling interval in seconds once native watching is exhausted (default: 5)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log level (default: INFO, or FILEXPLORER_LOG_LEVEL env var)",
    )
    parser.add_argument(
        "--stdio",
        action="store_true",
        help="Serve MCP over stdio instead of HTTP",
    )
    return parser


def settings_from_args(argv: Optional[list[str]] = None, env: Optional[Mapping[str, str]] = None):
    """Parse CLI arguments; returns (settings, use_stdio)."""
    args = build_arg_parser().parse_args(argv)
    settings = Settings.from_env(
        env,
        root=args.root,
        host=args.host,
        port=args.port,
        poll_interval=args.poll_interval,
        log_level=args.log_level,
    )
    return settings, args.stdio
