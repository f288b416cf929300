"""Directive extraction — split an ``[EXECUTE: ...]`` marker out of assistant text.

Only syntax is parsed here. Whether the command is sensible is for the
user to judge at the approval step.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from companion_exec.core.protocols import Directive

logger = logging.getLogger(__name__)

# Case-sensitive; the command runs up to the first closing bracket.
DIRECTIVE_PATTERN = re.compile(r"\[EXECUTE:\s*(.+?)\]")


def extract(text: str) -> Optional[Directive]:
    """Return the first execution directive in ``text``, or None.

    A marker whose command is blank after trimming counts as no directive:
    the caller keeps the whole text, marker included, as ordinary chat.
    """
    match = DIRECTIVE_PATTERN.search(text)
    if match is None:
        return None

    command = match.group(1).strip()
    if not command:
        logger.debug("Ignoring empty execution directive at offset %d", match.start())
        return None

    clean_text = (text[:match.start()] + text[match.end():]).strip()
    return Directive(command=command, clean_text=clean_text)
