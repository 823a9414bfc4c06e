"""Export conversation transcripts to Markdown and JSON formats."""

import json
from datetime import datetime, timezone
from typing import Iterable

from .core import ConversationContext, Message, parse_timestamp


def _format_ts(value: str | None) -> str:
    seconds = parse_timestamp(value)
    if not seconds:
        return ""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def transcript_to_markdown(context: ConversationContext, messages: Iterable[Message]) -> str:
    """Export a transcript as clean Markdown."""
    messages = list(messages)
    lines = [f"# Challenge {context.target_id}", ""]
    for key, value in context.aux.items():
        lines.append(f"**{key}:** {value}")
    lines.append(f"**Messages:** {len(messages)}")
    lines.extend(["", "---", ""])

    for msg in messages:
        role_label = msg.role.capitalize()
        ts = _format_ts(msg.created_at)
        lines.append(f"## {role_label}" + (f" ({ts})" if ts else ""))
        lines.append("")
        lines.append(msg.content)
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def transcript_to_json(context: ConversationContext, messages: Iterable[Message]) -> str:
    """Export a transcript as structured JSON."""
    data = {
        "challenge_id": context.target_id,
        "context": context.aux,
        "messages": [msg.to_dict() for msg in messages],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)
