"""Locate the completion tool executable.

Processes launched from a desktop session often do not inherit the user's
shell PATH, so well-known install locations are probed before PATH. When
nothing answers ``--version`` the launcher falls back to ``npx claude``.

The resolved launcher is cached for the lifetime of the process; call
clear_cli_path_cache() after installing the tool mid-session.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path

logger = logging.getLogger("workflow_copilot.runner.cli_path")

CLI_NAME = "claude"
_VERSION_PROBE_TIMEOUT_S = 5.0

# Known install locations, checked in order.
KNOWN_CLI_PATHS: tuple[Path, ...] = (
    Path.home() / ".local" / "bin" / CLI_NAME,      # native installer
    Path("/opt/homebrew/bin") / CLI_NAME,           # Homebrew (Apple Silicon)
    Path("/usr/local/bin") / CLI_NAME,              # Homebrew (Intel) / npm global
    Path.home() / ".npm-global" / "bin" / CLI_NAME, # npm custom prefix
)

NPX_FALLBACK: tuple[str, ...] = ("npx", CLI_NAME)

# None = not probed yet
_cached_launcher: tuple[str, ...] | None = None


async def _probe(executable: str) -> str | None:
    """Run ``<executable> --version``. Returns the version line, or None on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            "--version",
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug("Launcher probe failed for %s: %s", executable, e)
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=_VERSION_PROBE_TIMEOUT_S)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("Launcher probe timed out for %s", executable)
        return None

    if proc.returncode != 0:
        return None
    return stdout.decode("utf-8", errors="replace").strip()[:50]


async def find_cli_launcher(known_paths: tuple[Path, ...] = KNOWN_CLI_PATHS) -> tuple[str, ...]:
    """Return the argv prefix used to start the completion tool.

    Order: known install paths → PATH lookup → ``npx claude``.
    """
    global _cached_launcher
    if _cached_launcher is not None:
        return _cached_launcher

    for path in known_paths:
        if not path.exists():
            continue
        version = await _probe(str(path))
        if version is not None:
            logger.info("Completion tool found at known path %s (%s)", path, version)
            _cached_launcher = (str(path),)
            return _cached_launcher
        logger.warning("Completion tool present but not executable at %s", path)

    on_path = shutil.which(CLI_NAME)
    if on_path:
        version = await _probe(on_path)
        if version is not None:
            logger.info("Completion tool found on PATH (%s)", version)
            _cached_launcher = (CLI_NAME,)
            return _cached_launcher

    logger.info("Completion tool not found, falling back to %s", " ".join(NPX_FALLBACK))
    _cached_launcher = NPX_FALLBACK
    return _cached_launcher


def clear_cli_path_cache() -> None:
    """Forget the cached launcher so the next lookup probes again."""
    global _cached_launcher
    _cached_launcher = None
