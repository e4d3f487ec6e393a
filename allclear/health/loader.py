"""Checks-file loader — executes a Python file that declares checks.

The file runs with these names pre-bound:

    check     registry.check, usable as a call or a decorator
    registry  the CheckRegistry being populated
    settings  the active Settings

Example ``checks.py``::

    @check("Disk usage is below 90%", timeout=5)
    def disk(c):
        c.expect(disk_usage_percent()).to_be_less_than(90)
"""

from __future__ import annotations

import logging
import runpy
from pathlib import Path
from typing import Any

from ..config import settings as default_settings
from .registry import CheckRegistry

logger = logging.getLogger(__name__)


def load_checks_file(
    path: Path | str, registry: CheckRegistry, cfg: Any = None,
) -> int:
    """Run ``path`` against ``registry``; return how many checks it registered."""
    path = Path(path)
    if not path.exists():
        logger.warning("Checks file not found: %s", path)
        return 0

    before = len(registry)
    runpy.run_path(
        str(path),
        init_globals={
            "check": registry.check,
            "registry": registry,
            "settings": cfg or default_settings,
        },
        run_name="allclear_checks",
    )
    added = len(registry) - before
    logger.info("Loaded %d checks from %s", added, path)
    return added
