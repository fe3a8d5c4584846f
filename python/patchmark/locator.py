from typing import Optional, Tuple

import structlog

logger = structlog.get_logger(__name__)


def locate_span(document: str, context: str, search_from: int = 0) -> Optional[Tuple[int, int]]:
    """
    Finds where `context` sits in `document`, searching from `search_from`.
    Returns (anchor, end) where `end` is the offset right after the context,
    or None if the context cannot be found.

    Strategies:
    1. Exact substring match.
    2. Line match ignoring leading/trailing whitespace; the anchor is the
       start of the matching line and `end` follows its trimmed content.

    An empty context is the top-of-document anchor and always resolves to 0.
    """
    if not context:
        return 0, 0

    search_from = max(0, min(search_from, len(document)))

    idx = document.find(context, search_from)
    if idx != -1:
        logger.debug("Exact context match", offset=idx)
        return idx, idx + len(context)

    trimmed = context.strip()
    offset = search_from
    for line in document[search_from:].split("\n"):
        if line.strip() == trimmed:
            lead = len(line) - len(line.lstrip())
            logger.debug("Whitespace-tolerant context match", offset=offset, context=trimmed[:50])
            return offset, offset + lead + len(trimmed)
        offset += len(line) + 1

    logger.debug("Context not found", context=context[:50], search_from=search_from)
    return None


def locate(document: str, context: str, search_from: int = 0) -> Optional[int]:
    """Returns the anchor offset of `context`, or None when it is not found."""
    span = locate_span(document, context, search_from)
    if span is None:
        return None
    return span[0]
