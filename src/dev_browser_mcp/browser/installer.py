"""
Chromium installation check

Playwright ships browsers separately from the Python package. The host checks
for a Chromium build on first use and installs one through the Playwright CLI
when it is missing.
"""

import asyncio
import os
import sys
from pathlib import Path

from ..utils.logging_config import get_logger

logger = get_logger(__name__)

_checked = False


def playwright_browsers_dir() -> Path:
    """
    Get the directory Playwright installs browsers into.

    Honors PLAYWRIGHT_BROWSERS_PATH, otherwise the per-platform default cache.
    """
    override = os.getenv("PLAYWRIGHT_BROWSERS_PATH")
    if override and override != "0":
        return Path(override)

    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Caches" / "ms-playwright"
    if sys.platform.startswith("win"):
        return Path(os.getenv("LOCALAPPDATA", home / "AppData" / "Local")) / "ms-playwright"
    return home / ".cache" / "ms-playwright"


def is_chromium_installed() -> bool:
    """Check whether a Playwright Chromium build is present."""
    browsers_dir = playwright_browsers_dir()
    if not browsers_dir.exists():
        return False

    try:
        return any(entry.name.startswith("chromium") for entry in browsers_dir.iterdir())
    except OSError:
        return False


async def ensure_chromium_installed() -> None:
    """
    Install Playwright Chromium if it is not installed yet.

    Runs at most once per process. A failed install is logged, not raised:
    the subsequent launch reports the real error with Playwright's own hint.
    """
    global _checked
    if _checked:
        return
    _checked = True

    if is_chromium_installed():
        logger.info("Playwright Chromium already installed")
        return

    logger.info("Playwright Chromium not found. Installing (this may take a minute)...")
    command = [sys.executable, "-m", "playwright", "install", "chromium"]

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except OSError as e:
        logger.error(f"Failed to launch Playwright installer: {e}")
        logger.error("You may need to run manually: playwright install chromium")
        return

    assert process.stdout is not None
    while True:
        line = await process.stdout.readline()
        if not line:
            break
        output = line.decode("utf-8", errors="replace").rstrip()
        if output:
            logger.info(f"PLAYWRIGHT_INSTALL {output}")

    returncode = await process.wait()
    if returncode == 0:
        logger.info("Chromium installed successfully")
    else:
        logger.error(f"Playwright installer exited with code {returncode}")
        logger.error("You may need to run manually: playwright install chromium")
