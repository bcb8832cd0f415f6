"""Message chunking and Markdown -> Telegram-style HTML rendering."""
from __future__ import annotations

import re
from typing import Literal

Markup = Literal["plain", "html"]

CODE_BLOCK_RE = re.compile(r"```[\w]*\n?([\s\S]*?)```")
INLINE_CODE_RE = re.compile(r"`([^`]+)`")
HEADER_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
BLOCKQUOTE_RE = re.compile(r"^>\s*(.*)$", re.MULTILINE)
LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
BOLD_STAR_RE = re.compile(r"\*\*(.+?)\*\*")
BOLD_UNDERSCORE_RE = re.compile(r"__(.+?)__")
# _text_ but not some_var_name
ITALIC_RE = re.compile(r"(?<![a-zA-Z0-9])_([^_\n]+)_(?![a-zA-Z0-9])")
STRIKE_RE = re.compile(r"~~(.+?)~~")
BULLET_RE = re.compile(r"^[-*]\s+", re.MULTILINE)


def chunk(content: str, max_len: int) -> list[str]:
    """Split ``content`` into pieces of at most ``max_len`` characters.

    Prefers the last newline inside the limit, then the last space, then a
    hard cut. Whitespace at the start of every following piece is dropped.
    """
    if max_len <= 0:
        raise ValueError("max_len must be positive")
    if len(content) <= max_len:
        return [content]

    chunks: list[str] = []
    while content:
        if len(content) <= max_len:
            chunks.append(content)
            break
        window = content[:max_len]
        pos = window.rfind("\n")
        if pos <= 0:
            pos = window.rfind(" ")
        if pos <= 0:
            pos = max_len
        chunks.append(content[:pos])
        content = content[pos:].lstrip()
    return chunks


def escape_html(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def transform(markdown: str) -> str:
    """Render a Markdown reply as the HTML subset chat platforms accept.

    Code spans and blocks are lifted out before anything else and put back
    last, so their content is escaped once and never rewritten.
    """
    if not markdown:
        return ""

    code_blocks: list[str] = []

    def _save_block(m: re.Match) -> str:
        code_blocks.append(m.group(1))
        return f"\x00CB{len(code_blocks) - 1}\x00"

    inline_codes: list[str] = []

    def _save_inline(m: re.Match) -> str:
        inline_codes.append(m.group(1))
        return f"\x00IC{len(inline_codes) - 1}\x00"

    text = CODE_BLOCK_RE.sub(_save_block, markdown)
    text = INLINE_CODE_RE.sub(_save_inline, text)

    text = HEADER_RE.sub(r"\1", text)
    text = BLOCKQUOTE_RE.sub(r"\1", text)

    text = escape_html(text)

    text = LINK_RE.sub(r'<a href="\2">\1</a>', text)
    text = BOLD_STAR_RE.sub(r"<b>\1</b>", text)
    text = BOLD_UNDERSCORE_RE.sub(r"<b>\1</b>", text)
    text = ITALIC_RE.sub(r"<i>\1</i>", text)
    text = STRIKE_RE.sub(r"<s>\1</s>", text)
    text = BULLET_RE.sub("• ", text)

    for i, code in enumerate(inline_codes):
        text = text.replace(f"\x00IC{i}\x00", f"<code>{escape_html(code)}</code>")
    for i, code in enumerate(code_blocks):
        text = text.replace(f"\x00CB{i}\x00", f"<pre><code>{escape_html(code)}</code></pre>")
    return text


def render(content: str, max_len: int, markup: Markup = "plain") -> list[str]:
    """Chunk first, then convert each chunk, the order outbound sends use."""
    chunks = chunk(content, max_len)
    if markup == "html":
        return [transform(c) for c in chunks]
    return chunks
