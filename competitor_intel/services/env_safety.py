from __future__ import annotations

import os
from pathlib import Path

from loguru import logger

_checked = False


def sanitize_ssl_keylogfile() -> None:
    """Unset SSLKEYLOGFILE when it points to an unusable path.

    httpx and the OpenAI SDK both build an SSL context on first use, and an
    unwritable key-log path makes that fail before any request is sent.
    Checked once per process.
    """
    global _checked
    if _checked:
        return
    _checked = True

    keylog_path = os.getenv("SSLKEYLOGFILE", "").strip()
    if not keylog_path:
        return

    try:
        path = Path(keylog_path)
        parent = path.parent
        if parent and not parent.exists():
            os.environ.pop("SSLKEYLOGFILE", None)
            logger.warning(f"Ignoring SSLKEYLOGFILE, directory does not exist: {parent}")
            return

        # Validate writability without truncating existing files.
        with open(path, "a", encoding="utf-8"):
            pass
    except OSError as exc:
        os.environ.pop("SSLKEYLOGFILE", None)
        logger.warning(f"Ignoring unusable SSLKEYLOGFILE {keylog_path}: {exc}")


def reset_checks() -> None:
    global _checked
    _checked = False
