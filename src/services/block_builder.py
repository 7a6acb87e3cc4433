"""Fluent builder for Slack Block Kit payloads."""

from typing import Any

# Slack rejects markdown blocks longer than this
MARKDOWN_BLOCK_LIMIT = 12000


class BlockBuilder:
    """Accumulates Block Kit blocks for one message."""

    def __init__(self):
        self.blocks: list[dict[str, Any]] = []

    def build(self) -> list[dict[str, Any]]:
        return list(self.blocks)

    def text(self, text: str) -> "BlockBuilder":
        self.blocks.append({
            "type": "section",
            "text": {"type": "plain_text", "text": text},
        })
        return self

    def markdown(self, text: str) -> "BlockBuilder":
        """Add standard markdown, split across blocks when it is too long."""
        for start in range(0, max(len(text), 1), MARKDOWN_BLOCK_LIMIT):
            self.blocks.append({
                "type": "markdown",
                "text": text[start:start + MARKDOWN_BLOCK_LIMIT],
            })
        return self

    def image(self, image_url: str, alt_text: str = "Image") -> "BlockBuilder":
        self.blocks.append({
            "type": "image",
            "image_url": image_url,
            "alt_text": alt_text,
        })
        return self

    def insight(self, title: str, *actions: str) -> "BlockBuilder":
        """Add a quoted insight: bold title followed by one line per action."""
        elements: list[dict[str, Any]] = [
            {"type": "text", "text": f"{title}\n", "style": {"bold": True}},
        ]
        for action in actions:
            elements.extend([
                {"type": "emoji", "name": "zap"},
                {"type": "text", "text": " "},
                {"type": "text", "text": f"{action}\n"},
            ])

        self.blocks.append({
            "type": "rich_text",
            "elements": [{"type": "rich_text_quote", "elements": elements}],
        })
        return self
