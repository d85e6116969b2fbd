"""
Turns raw source text into indexed logical lines carrying their block depth.

Dialect A nests by indentation, dialect B by braces. Each has its own layout
builder; both produce a `SourceProgram` whose `block_end` answers "where does
the block that starts here end".
"""
import re
from dataclasses import dataclass

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LEADING_CLOSERS = re.compile(r"^[\s}]*")
_BRACES_ONLY = re.compile(r"^[{};\s]*$")


@dataclass(frozen=True)
class SourceLine:
    text: str
    depth: int
    number: int
    is_blank: bool


class SourceProgram:
    def __init__(self, lines, indent_unit: int):
        self.lines = tuple(lines)
        self.indent_unit = indent_unit

    def __len__(self):
        return len(self.lines)

    def __getitem__(self, index) -> SourceLine:
        return self.lines[index]

    def block_end(self, start: int, required_depth: int) -> int:
        """Index of the first line at or after `start` that leaves the block."""
        i = start
        while i < len(self.lines) and (self.lines[i].is_blank or self.lines[i].depth >= required_depth):
            i += 1
        return i

    def next_code_line(self, start: int) -> int:
        i = start
        while i < len(self.lines) and self.lines[i].is_blank:
            i += 1
        return i

    def body_depth(self, header: int) -> int:
        """Depth of the block opened by the line at `header`."""
        first = self.next_code_line(header + 1)
        if first < len(self.lines) and self.lines[first].depth > self.lines[header].depth:
            return self.lines[first].depth
        return self.lines[header].depth + self.indent_unit


def code_chars(text: str):
    """Yield (index, char) for characters outside string and char literals."""
    quote = None
    escaped = False
    for i, ch in enumerate(text):
        if quote:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
            continue
        yield i, ch


def strip_comment(text: str, marker: str) -> str:
    for i, _ in code_chars(text):
        if text.startswith(marker, i):
            return text[:i]
    return text


def _brace_delta(text: str) -> int:
    delta = 0
    for _, ch in code_chars(text):
        if ch == "{":
            delta += 1
        elif ch == "}":
            delta -= 1
    return delta


def _split_lines(source: str):
    return source.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def indent_layout(source: str) -> SourceProgram:
    """Dialect A: depth is the leading-whitespace column count."""
    lines = []
    for number, raw in enumerate(_split_lines(source)):
        code = strip_comment(raw, "#").rstrip()
        text = code.strip()
        depth = len(code) - len(code.lstrip()) if text else 0
        lines.append(SourceLine(text, depth, number, not text))

    indent_unit = next((line.depth for line in lines if line.depth > 0 and not line.is_blank), 4)
    return SourceProgram(lines, indent_unit)


def brace_layout(source: str) -> SourceProgram:
    """Dialect B: depth is the number of braces still open before the line."""
    # Keep the newlines of block comments so line numbers stay aligned.
    cleaned = _BLOCK_COMMENT.sub(lambda m: "\n" * m.group().count("\n"), source)

    lines = []
    open_braces = 0
    for number, raw in enumerate(_split_lines(cleaned)):
        code = strip_comment(raw, "//").strip()
        leading = _LEADING_CLOSERS.match(code).group()
        depth = max(0, open_braces - leading.count("}"))
        open_braces = max(0, open_braces + _brace_delta(code))

        text = code[len(leading):].strip()
        is_blank = not text or text.startswith("#") or bool(_BRACES_ONLY.match(text))
        lines.append(SourceLine("" if is_blank else text, depth, number, is_blank))

    return SourceProgram(lines, 1)
