"""Tests for the markdown render pipeline."""
from html.parser import HTMLParser

import pytest

from renderer import MarkdownRenderer, RenderResult, render, replace_math, replace_symbols

VOID = {"br", "hr", "img", "input", "meta", "link"}


class TagBalance(HTMLParser):

    def __init__(self):
        super().__init__()
        self.stack = []
        self.errors = []

    def handle_starttag(self, tag, attrs):
        if tag not in VOID:
            self.stack.append(tag)

    def handle_startendtag(self, tag, attrs):
        pass

    def handle_endtag(self, tag):
        if not self.stack or self.stack[-1] != tag:
            self.errors.append(tag)
        else:
            self.stack.pop()


def assert_balanced(html):
    parser = TagBalance()
    parser.feed(html)
    parser.close()
    assert parser.errors == []
    assert parser.stack == []


SAMPLE = """# Title

Some *emphasis*, **strong**, ~~struck~~ and "quotes".

| a | b |
|---|---|
| 1 | 2 |

- [x] done
- [ ] todo

Footnote here[^1].

```python
def f(x):
    return x * 2
```

Inline $a+b$ and display $$c$$ :rocket:

[^1]: The note.
"""


class TestEdgeInputs:

    def test_empty_input(self):
        assert render("") == ""

    @pytest.mark.parametrize("text", [
        "```",
        "**unclosed",
        "[link](",
        "<div>",
        "| a |\n|-|",
        "$$",
        "$",
        "\x00",
        "> > > deep",
        "~~~\nnever closed",
        "- [x]",
        "# {#}",
    ])
    def test_malformed_input_renders(self, text):
        assert isinstance(render(text), str)

    def test_output_is_balanced(self):
        assert_balanced(render(SAMPLE))

    def test_idempotent(self):
        assert render(SAMPLE) == render(SAMPLE)


class TestStructure:

    def test_heading_positional_ids(self):
        html = render("# A\n\ntext\n\n## B")
        assert '<h1 id="heading-1">A</h1>' in html
        assert '<h2 id="heading-2">B</h2>' in html

    def test_heading_explicit_id(self):
        html = render("# Intro {#intro}\n\n## Next")
        assert '<h1 id="intro">Intro</h1>' in html
        assert '<h2 id="heading-2">Next</h2>' in html

    def test_emphasis_and_strikethrough(self):
        html = render("*a* **b** ~~c~~")
        assert "<em>a</em>" in html
        assert "<strong>b</strong>" in html
        assert "<del>c</del>" in html

    def test_table(self):
        html = render("| a | b |\n|---|---|\n| 1 | 2 |")
        assert "<table>" in html
        assert "<td>1</td>" in html

    def test_footnote(self):
        html = render("Text[^1]\n\n[^1]: Note")
        assert 'class="footnote"' in html
        assert "Note" in html

    def test_task_list(self):
        html = render("- [x] Done\n- [ ] Todo")
        assert html.count('class="task-list-item"') == 2
        assert html.count('type="checkbox"') == 2
        assert html.count('checked="checked"') == 1
        assert "[x]" not in html
        assert "Done" in html

    def test_loose_task_list(self):
        html = render("- [ ] one\n\n- [X] two")
        assert html.count('type="checkbox"') == 2
        assert html.count('checked="checked"') == 1

    def test_empty_task_items(self):
        html = render("- [ ]\n- [x]")
        assert html.count('type="checkbox"') == 2
        assert "[ ]" not in html

    def test_plain_list_untouched(self):
        html = render("- item\n- [link]")
        assert "checkbox" not in html
        assert "task-list-item" not in html

    def test_smart_punctuation(self):
        html = render('"quoted" -- dash')
        assert "&ldquo;quoted&rdquo;" in html
        assert "&ndash;" in html


class TestCodeBlocks:

    def test_no_language_tag(self):
        html = render("```\n<b>x</b> & y\n```")
        assert "<pre><code>&lt;b&gt;x&lt;/b&gt; &amp; y\n</code></pre>" in html
        assert "<b>" not in html

    def test_unknown_language_tag(self):
        html = render("```nosuchlang\n<b>x</b>\n```")
        assert 'class="highlight highlight-nosuchlang"' in html
        assert 'class="language-nosuchlang"' in html
        assert "&lt;b&gt;x&lt;/b&gt;" in html
        assert "<b>" not in html

    def test_known_language_is_highlighted(self):
        html = render("```python\ndef f():\n    return 1\n```")
        assert '<pre class="highlight highlight-python"><code class="language-python">' in html
        assert '<span style="' in html
        assert "def" in html

    def test_unknown_style_falls_back(self):
        html = MarkdownRenderer(highlight_style="no-such-style").render("```python\nx = 1\n```")
        assert 'class="language-python"' in html

    def test_extension_lookup(self):
        html = render("~~~js\nlet a = 1;\n~~~")
        assert 'class="language-js"' in html

    def test_blank_block_with_tag_is_plain(self):
        html = render("```python\n   \n```")
        assert "<pre><code>" in html
        assert "language-python" not in html

    def test_code_is_not_markdown(self):
        html = render("```\n# not a heading\n*not em*\n```")
        assert "<h1" not in html
        assert "<em>" not in html
        assert "# not a heading" in html

    def test_unterminated_fence_runs_to_end(self):
        html = render("before\n\n```\ncode\nmore")
        assert "<p>before</p>" in html
        assert "<pre><code>code\nmore\n</code></pre>" in html

    def test_longer_closing_fence(self):
        html = render("````\n```\ninner\n```\n````\n\nafter")
        assert "```\ninner\n```" in html
        assert "<p>after</p>" in html

    def test_highlight_keeps_lines(self):
        html = render('```python\nx = """a\nb"""\ny = 2\n```')
        body = html.split('<code class="language-python">')[1].split("</code>")[0]
        assert body.count("\n") == 3

    def test_fence_in_blockquote(self):
        html = render("> ```python\n> x = 1\n> ```\n")
        assert "<blockquote>" in html
        assert '<code class="language-python">' in html
        assert html.index("<blockquote>") < html.index("<pre") < html.index("</blockquote>")
        assert_balanced(html)

    def test_fence_in_list_item(self):
        html = render("- a\n\n    ```py\n    x=1\n    ```\n\n- b\n")
        assert html.count("<ul>") == 1
        assert '<pre class="highlight highlight-py">' in html
        assert html.index("<pre") < html.index("b</") < html.index("</ul>")
        assert_balanced(html)


class TestMath:

    def test_inline(self):
        html = render("This is inline math: $E = mc^2$")
        assert '<span class="katex">\\(E = mc^2\\)</span>' in html

    def test_display_multiline(self):
        html = render("$$\nx = 1\n$$")
        assert '<span class="katex-display">\\[\nx = 1\n\\]</span>' in html

    def test_single_bare_dollar(self):
        html = render("It costs $5 today")
        assert "katex" not in html
        assert "$5" in html

    def test_display_and_inline_on_one_line(self):
        html = render("$$a$$ and $b$")
        assert '<span class="katex-display">\\[a\\]</span>' in html
        assert '<span class="katex">\\(b\\)</span>' in html
        assert "$" not in html

    def test_display_first(self):
        assert replace_math("$$x$$") == '<span class="katex-display">\\[x\\]</span>'

    def test_inline_does_not_span_lines(self):
        assert replace_math("$a\nb$") == "$a\nb$"


class TestSymbols:

    def test_smile_and_heart(self):
        html = render("Hello :smile: :heart:")
        assert "\U0001F604" in html
        assert "❤️" in html
        assert ":smile:" not in html
        assert ":heart:" not in html

    def test_case_sensitive(self):
        assert ":Smile:" in render(":Smile:")

    def test_substituted_inside_code(self):
        assert "\U0001F680" in render("```\n:rocket:\n```")

    def test_custom_table(self):
        html = MarkdownRenderer(symbols={"tada": "\U0001F389"}).render(":tada: :smile:")
        assert "\U0001F389" in html
        assert ":smile:" in html

    def test_replace_symbols_literal(self):
        assert replace_symbols("a :x: b", {"x": "X"}) == "a X b"


class TestRenderResult:

    def test_render_result(self):
        result = MarkdownRenderer().render_result("notes.md", "# B")
        assert isinstance(result, RenderResult)
        assert result.title == "notes.md"
        assert '<h1 id="heading-1">B</h1>' in result.html

    def test_frozen(self):
        result = RenderResult("t", "h")
        with pytest.raises(AttributeError):
            result.html = "x"
