"""Serialized message documents.

Message content is stored as a JSON document. Replies from the model are
wrapped as markdown documents; rich documents written by other clients are
flattened to plain text when history is sent back to a model.
"""

import json

MESSAGE_SCHEMA_VERSION = "1.0"


def serialize_markdown_content(text: str) -> str:
    """Wrap markdown text in a message document."""
    return json.dumps(
        {"format": "markdown", "schemaVersion": MESSAGE_SCHEMA_VERSION, "text": text},
        ensure_ascii=False,
    )


def _rich_doc_to_text(doc: dict) -> str:
    lines: list[str] = []
    for block in doc.get("blocks") or []:
        block_type = block.get("type")
        if block_type in ("heading", "paragraph", "callout"):
            if block.get("text"):
                lines.append(block["text"])
        elif block_type == "bullets":
            for item in block.get("items") or []:
                lines.append(f"- {item}")
        elif block_type == "numbered":
            for index, item in enumerate(block.get("items") or [], start=1):
                if isinstance(item, str):
                    lines.append(f"{index}. {item}")
                    continue
                if item.get("title"):
                    lines.append(f"{index}. {item['title']}")
                for line in item.get("lines") or []:
                    lines.append(f"- {line}")
        elif block_type == "code":
            if block.get("code"):
                lines.append(block["code"])
    return "\n".join(lines).strip()


def message_plain_text(content: str) -> str:
    """Extract plain text from a stored message document.

    Content that is not a recognized document is returned unchanged.
    """
    try:
        parsed = json.loads(content)
    except (TypeError, ValueError):
        return content
    if not isinstance(parsed, dict):
        return content
    if parsed.get("format") == "markdown" and isinstance(parsed.get("text"), str):
        return parsed["text"]
    if parsed.get("format") == "richjson" and isinstance(parsed.get("doc"), dict):
        return _rich_doc_to_text(parsed["doc"])
    return content
