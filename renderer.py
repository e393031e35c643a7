"""Markdown to HTML rendering for the live preview."""

import html
import logging
import re
import xml.etree.ElementTree as etree
from dataclasses import dataclass

import markdown
from markdown.extensions import Extension
from markdown.inlinepatterns import SimpleTagInlineProcessor
from markdown.preprocessors import Preprocessor
from markdown.treeprocessors import Treeprocessor
from pygments import format as format_tokens
from pygments import lex
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name, get_lexer_for_filename
from pygments.lexers.special import TextLexer
from pygments.util import ClassNotFound

logger = logging.getLogger(__name__)

DEFAULT_HIGHLIGHT_STYLE = "monokai"

SYMBOLS = {
    "smile": "\U0001F604",
    "laughing": "\U0001F606",
    "wink": "\U0001F609",
    "blush": "\U0001F60A",
    "heart": "❤️",
    "broken_heart": "\U0001F494",
    "thumbsup": "\U0001F44D",
    "thumbsdown": "\U0001F44E",
    "ok_hand": "\U0001F44C",
    "point_right": "\U0001F449",
    "point_left": "\U0001F448",
    "point_up": "\U0001F446",
    "point_down": "\U0001F447",
    "clap": "\U0001F44F",
    "wave": "\U0001F44B",
    "fire": "\U0001F525",
    "rocket": "\U0001F680",
    "star": "⭐",
    "warning": "⚠️",
    "exclamation": "❗",
    "question": "❓",
    "heavy_check_mark": "✅",
    "x": "❌",
    "o": "⭕",
    "bulb": "\U0001F4A1",
    "gear": "⚙️",
    "wrench": "\U0001F527",
    "hammer": "\U0001F528",
    "lock": "\U0001F512",
    "unlock": "\U0001F513",
    "key": "\U0001F511",
    "mag": "\U0001F50D",
    "computer": "\U0001F4BB",
    "phone": "\U0001F4F1",
    "email": "\U0001F4E7",
    "book": "\U0001F4D6",
    "pencil": "✏️",
    "memo": "\U0001F4DD",
    "clipboard": "\U0001F4CB",
    "calendar": "\U0001F4C5",
    "clock": "\U0001F550",
    "hourglass": "⏳",
}

DISPLAY_MATH_RE = re.compile(r"\$\$([^$]+?)\$\$")
INLINE_MATH_RE = re.compile(r"\$([^$\n]+?)\$")

FENCE_OPEN_RE = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})(?P<info>.*)$")
STRIKE_RE = r"(~~)(.+?)~~"
TASK_RE = re.compile(r"^\[([ xX])\](?:\s+|$)")
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")


@dataclass(frozen=True)
class RenderResult:
    title: str
    html: str


class CodeHighlighter:
    """Turns a fenced block into a ``<pre>`` segment using Pygments."""

    def __init__(self, style: str = DEFAULT_HIGHLIGHT_STYLE):
        try:
            self.formatter = HtmlFormatter(nowrap=True, noclasses=True, style=style)
        except ClassNotFound:
            logger.warning("Unknown highlight style %r, using %s", style, DEFAULT_HIGHLIGHT_STYLE)
            self.formatter = HtmlFormatter(nowrap=True, noclasses=True, style=DEFAULT_HIGHLIGHT_STYLE)

    @staticmethod
    def find_lexer(lang: str):
        options = {"stripnl": False, "ensurenl": False}
        try:
            return get_lexer_by_name(lang, **options)
        except ClassNotFound:
            pass
        try:
            return get_lexer_for_filename(f"block.{lang}", **options)
        except ClassNotFound:
            return TextLexer(**options)

    def highlight(self, code: str, lang: str) -> str:
        if not lang or not code.strip():
            return f"<pre><code>{html.escape(code, quote=False)}</code></pre>"

        lexer = self.find_lexer(lang)
        out = []
        for line in _split_lines(lex(code, lexer)):
            # HtmlFormatter terminates the last line itself
            out.append(format_tokens(line, self.formatter).rstrip("\n"))
            out.append("\n")
        tag = html.escape(lang)
        return f'<pre class="highlight highlight-{tag}"><code class="language-{tag}">{"".join(out)}</code></pre>'

    def fence_format(self, source, language, css_class, options, md, **kwargs):
        """Formatter for superfences, which hands over the block without its last newline."""
        if source and not source.endswith("\n"):
            source += "\n"
        return self.highlight(source, language)


def _split_lines(tokens):
    # Lexing runs over the whole block so multi-line constructs keep their
    # state; formatting happens one line at a time.
    line = []
    for ttype, value in tokens:
        parts = value.split("\n")
        for part in parts[:-1]:
            if part:
                line.append((ttype, part))
            yield line
            line = []
        if parts[-1]:
            line.append((ttype, parts[-1]))
    if line:
        yield line


class FenceCloser(Preprocessor):
    """Closes a top-level fence left open so the block runs to the end of input."""

    def run(self, lines):
        close_re = None
        for line in lines:
            if close_re is None:
                m = FENCE_OPEN_RE.match(line)
                if m is None or (m.group("fence")[0] == "`" and "`" in m.group("info")):
                    continue
                fence = m.group("fence")
                close_re = re.compile(r"^ {0,3}" + re.escape(fence[0]) + "{" + str(len(fence)) + r",}\s*$")
                opening = m.group("indent") + fence
            elif close_re.match(line):
                close_re = None
        if close_re is None:
            return lines
        lines = list(lines)
        while lines and not lines[-1].strip():
            lines.pop()
        return lines + [opening]


class HeadingIdTreeprocessor(Treeprocessor):

    def run(self, root):
        position = 0
        for el in root.iter():
            if el.tag not in HEADING_TAGS:
                continue
            position += 1
            if not el.get("id"):
                el.set("id", f"heading-{position}")


class TaskListTreeprocessor(Treeprocessor):

    def run(self, root):
        for li in root.iter("li"):
            holder = li
            if not (li.text or "").strip() and len(li) and li[0].tag == "p":
                holder = li[0]
            m = TASK_RE.match(holder.text or "")
            if m is None:
                continue
            checkbox = etree.Element("input", {"type": "checkbox", "disabled": "disabled"})
            if m.group(1) in "xX":
                checkbox.set("checked", "checked")
            checkbox.tail = holder.text[m.end():]
            holder.text = None
            holder.insert(0, checkbox)
            li.set("class", "task-list-item")


class LivePreviewExtension(Extension):
    """Unterminated fences, strikethrough, task lists and heading ids."""

    def extendMarkdown(self, md):
        # ahead of whitespace normalization and superfences
        md.preprocessors.register(FenceCloser(md), "livedown_close_fence", 35)
        md.inlinePatterns.register(SimpleTagInlineProcessor(STRIKE_RE, "del"), "livedown_strike", 55)
        # after attr_list (8) so explicit {#id} attributes win
        md.treeprocessors.register(HeadingIdTreeprocessor(md), "livedown_heading_ids", 5)
        md.treeprocessors.register(TaskListTreeprocessor(md), "livedown_tasks", 4)


def replace_math(text: str) -> str:
    text = DISPLAY_MATH_RE.sub(lambda m: f'<span class="katex-display">\\[{m.group(1)}\\]</span>', text)
    return INLINE_MATH_RE.sub(lambda m: f'<span class="katex">\\({m.group(1)}\\)</span>', text)


def replace_symbols(text: str, symbols: dict) -> str:
    for code, glyph in symbols.items():
        text = text.replace(f":{code}:", glyph)
    return text


class MarkdownRenderer:

    def __init__(self, highlight_style: str = DEFAULT_HIGHLIGHT_STYLE, symbols: dict = None):
        self.highlighter = CodeHighlighter(highlight_style)
        self.symbols = dict(SYMBOLS if symbols is None else symbols)

    def _extensions(self) -> list:
        return [
            "tables",
            "footnotes",
            "attr_list",
            "smarty",
            "sane_lists",
            "pymdownx.superfences",
            LivePreviewExtension(),
        ]

    def _extension_configs(self) -> dict:
        return {
            "pymdownx.superfences": {
                "custom_fences": [
                    {"name": "*", "class": "highlight", "format": self.highlighter.fence_format},
                ],
            },
        }

    def render(self, text: str) -> str:
        """Render markdown text to an HTML fragment. Never raises."""
        try:
            body = markdown.markdown(
                text, extensions=self._extensions(), extension_configs=self._extension_configs()
            )
        except Exception:
            logger.exception("Markdown conversion failed, showing source text")
            body = f"<pre>{html.escape(text, quote=False)}</pre>"
        body = replace_math(body)
        return replace_symbols(body, self.symbols)

    def render_result(self, title: str, text: str) -> RenderResult:
        return RenderResult(title=title, html=self.render(text))


_default_renderer = MarkdownRenderer()


def render(text: str) -> str:
    return _default_renderer.render(text)
