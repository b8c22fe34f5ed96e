"""Split long agent responses into chat-sized messages."""
from __future__ import annotations

FENCE = "```"
CLOSE_FENCE = "\n" + FENCE
REOPEN_FENCE = FENCE + "\n"

# Below this a reopened fence could eat the whole chunk and never make progress
MIN_LIMIT = 16

# A newline or space only counts as a break point past this share of the limit
SOFT_BREAK_RATIO = 0.3


def _break_point(text: str, limit: int) -> int:
    threshold = limit * SOFT_BREAK_RATIO
    at = text.rfind("\n", 0, limit + 1)
    if at < threshold:
        at = text.rfind(" ", 0, limit + 1)
    if at < threshold:
        at = limit
    return at


def segment(text: str, limit: int) -> list[str]:
    """Split text into chunks of at most `limit` characters.

    Breaks on the last newline before the limit, then the last space, then
    hard-cuts. A chunk that leaves a ``` fence open gets a closing fence and
    the next chunk reopens it, so every chunk renders on its own. A chunk that
    needs a closing fence is re-broken short enough to fit it under the limit.
    """
    if limit < MIN_LIMIT:
        raise ValueError(f"limit must be at least {MIN_LIMIT}, got {limit}")
    if len(text) <= limit:
        return [text]

    chunks = []
    remaining = text
    while remaining:
        if len(remaining) <= limit:
            chunks.append(remaining)
            break

        at = _break_point(remaining, limit)
        if remaining[at:].strip() and remaining[:at].count(FENCE) % 2:
            at = _break_point(remaining, limit - len(CLOSE_FENCE))
        chunk = remaining[:at]
        rest = remaining[at:].lstrip()

        if rest and chunk.count(FENCE) % 2:
            chunks.append(chunk + CLOSE_FENCE)
            remaining = REOPEN_FENCE + rest
        else:
            chunks.append(chunk)
            remaining = rest

    return chunks
