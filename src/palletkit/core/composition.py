"""Structural model of a runtime's composition source (runtime/src/lib.rs).

The runtime lists its pallets inside a `construct_runtime!` invocation:

    construct_runtime!(
        pub enum Runtime {
            System: frame_system = 0,
            // Monetary stuff
            Balances: pallet_balances = 1,
        }
    );

CompositionModel scans the source once, skipping comments and string
literals, and turns that block into an ordered list of CompositionEntry
values, each remembering the exact byte span it occupies (leading comment
lines included). Edits are span insertions and deletions computed from that
structure, so everything outside the touched spans is preserved byte for
byte. After every edit the text is re-scanned.

Each pallet also gets a `impl <module>::Config for Runtime` stub placed just
before `construct_runtime!` so the user knows where to configure it.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from palletkit.core.errors import CompositionParseError, IOFailure
from palletkit.core.naming import module_name, variant_name

logger = logging.getLogger(__name__)

_CONSTRUCT_RUNTIME_RE = re.compile(r"\bconstruct_runtime\s*!\s*\(")
_DECLARATION_RE = re.compile(
    r"""
    ^\s*
    (?:\#\s*\[[^\]]*\]\s*)*
    (?P<variant>[A-Za-z_]\w*)\s*:\s*
    (?P<path>[A-Za-z_]\w*(?:\s*::\s*[A-Za-z_]\w*)*(?:\s*::\s*<[^>]*>|\s*<[^>]*>)?)
    (?:\s*::\s*\{[^}]*\})?
    (?:\s*=\s*(?P<index>\d+))?
    \s*$
    """,
    re.VERBOSE,
)
_RAW_STRING_RE = re.compile(r'b?r(#*)"')
_WATERMARK_RE = re.compile(r"//\s*palletkit:\s*next-index\s*=\s*(?P<index>\d+)[^\n]*")
_OPENERS = {"(": ")", "{": "}", "[": "]", "<": ">"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


@dataclass(frozen=True)
class CompositionEntry:
    """One pallet declared in the runtime composition.

    Attributes:
        name: Pallet name; the crate name for new entries, the module path
            root (e.g. `pallet_balances`) for parsed ones
        index: Assigned pallet index, None to allocate `next_index()` on upsert
        variant: Runtime variant (e.g. `Balances`); derived from name if None
        module: Rust module path root (e.g. `pallet_balances`); derived if None
        has_config_stub: Whether an `impl <module>::Config for Runtime` exists
    """

    name: str
    index: int | None = None
    variant: str | None = None
    module: str | None = None
    has_config_stub: bool = False

    def __post_init__(self) -> None:
        if self.module is None:
            object.__setattr__(self, "module", module_name(self.name))
        if self.variant is None:
            object.__setattr__(self, "variant", variant_name(self.name))


@dataclass(frozen=True)
class _Declaration:
    entry: CompositionEntry
    span_start: int  # first byte of the entry's block, leading comments included
    span_end: int  # one past the entry's block, trailing newline included
    content_end: int  # one past the declaration text, before any comma
    has_comma: bool
    explicit_index: bool
    indent: str


@dataclass
class _Layout:
    invocation_start: int  # line start of the `construct_runtime!` line
    body_start: int  # one past the opening `{`
    body_end: int  # position of the closing `}`
    declarations: list[_Declaration] = field(default_factory=list)
    watermark: int | None = None
    watermark_span: tuple[int, int] | None = None


class CompositionModel:
    """Editable structural view of the runtime composition source."""

    def __init__(self, path: Path, text: str, base_index: int = 0) -> None:
        self.path = path
        self.base_index = base_index
        self._text = text
        self._layout = _scan(path, text)

    @classmethod
    def load(cls, path: Path, base_index: int = 0) -> "CompositionModel":
        """Load and parse the composition source from disk.

        Raises:
            IOFailure: If the file cannot be read
            CompositionParseError: If no well-formed construct_runtime! is found
        """
        try:
            raw = path.read_bytes()
        except OSError as e:
            raise IOFailure(f"Cannot read composition source {path}: {e}") from e
        return cls.from_bytes(raw, path, base_index)

    @classmethod
    def from_bytes(cls, raw: bytes, path: Path, base_index: int = 0) -> "CompositionModel":
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CompositionParseError.from_decode_error(path, raw, e) from e
        return cls(path, text, base_index)

    @classmethod
    def loads(cls, text: str, path: Path, base_index: int = 0) -> "CompositionModel":
        return cls(path, text, base_index)

    def serialize(self) -> bytes:
        return self._text.encode("utf-8")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def entries(self) -> list[CompositionEntry]:
        """Declared pallets in source order."""
        return [d.entry for d in self._layout.declarations]

    def get(self, name: str) -> CompositionEntry | None:
        declaration = self._find(name)
        return declaration.entry if declaration is not None else None

    def next_index(self) -> int:
        """Index the next added pallet receives.

        One past the highest assigned index, the base index when empty, and
        never below the watermark left behind by removals.
        """
        candidates = [self.base_index]
        indices = [d.entry.index for d in self._layout.declarations if d.entry.index is not None]
        if indices:
            candidates.append(max(indices) + 1)
        if self._layout.watermark is not None:
            candidates.append(self._layout.watermark)
        return max(candidates)

    def config_stub_line(self, name: str) -> int | None:
        """1-based line of the `impl <module>::Config for Runtime` block."""
        module = module_name(name)
        span = _find_config_impl(_mask(self.path, self._text), module)
        if span is None:
            return None
        return self._text.count("\n", 0, span[0]) + 1

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def upsert(self, entry: CompositionEntry) -> CompositionEntry:
        """Add a pallet, or leave an existing one untouched.

        An existing pallet keeps its index; indices are never reassigned.

        Returns:
            The entry as stored in the composition

        Raises:
            ValueError: If the requested index is already taken,
                or another module already uses the runtime variant name
        """
        existing = self._find(entry.name)
        if existing is not None:
            return existing.entry

        variant = entry.variant or variant_name(entry.name)
        for declaration in self._layout.declarations:
            if declaration.entry.variant == variant:
                raise ValueError(
                    f"Runtime variant {variant} is already declared for {declaration.entry.module} "
                    f"in {self.path}; cannot add {entry.module or module_name(entry.name)}"
                )

        index = entry.index if entry.index is not None else self.next_index()
        if any(d.entry.index == index for d in self._layout.declarations):
            raise ValueError(f"Pallet index {index} is already assigned in {self.path}")

        edits: list[tuple[int, int, str]] = []
        edits.append(self._declaration_insert(entry, index))

        module = entry.module or module_name(entry.name)
        if _find_config_impl(_mask(self.path, self._text), module) is None:
            stub = (
                f"impl {module}::Config for Runtime {{\n"
                f"\t/* {module} Trait config goes here */\n"
                "}\n\n"
            )
            edits.append((self._layout.invocation_start, self._layout.invocation_start, stub))

        logger.debug("Adding pallet %s at index %d to %s", entry.name, index, self.path)
        self._apply(edits)
        stored = self.get(entry.name)
        assert stored is not None
        return stored

    def remove(self, name: str) -> None:
        """Delete a pallet's declaration and its Config impl block.

        Removing an unknown pallet is a no-op. When the removed pallet held
        the highest index, a watermark comment keeps that index reserved.
        """
        declaration = self._find(name)
        if declaration is None:
            return

        reserved = self.next_index()
        edits = [(declaration.span_start, declaration.span_end, "")]

        # later implicit indices would shift down; pin them
        position = self._layout.declarations.index(declaration)
        for following in self._layout.declarations[position + 1 :]:
            if following.explicit_index:
                break
            edits.append((following.content_end, following.content_end, f" = {following.entry.index}"))

        impl_span = _find_config_impl(_mask(self.path, self._text), declaration.entry.module or "")
        if impl_span is not None:
            edits.append(_line_span(self._text, impl_span, swallow_blank_line=True))

        logger.debug("Removing pallet %s from %s", name, self.path)
        self._apply(edits)

        if self.next_index() < reserved:
            self._set_watermark(reserved)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find(self, name: str) -> _Declaration | None:
        module = module_name(name)
        for declaration in self._layout.declarations:
            if declaration.entry.module == module:
                return declaration
        return None

    def _apply(self, edits: list[tuple[int, int, str]]) -> None:
        text = self._text
        for start, end, replacement in sorted(edits, key=lambda e: (e[0], e[1]), reverse=True):
            text = text[:start] + replacement + text[end:]
        self._layout = _scan(self.path, text)
        self._text = text

    def _body_insert_point(self, indent_hint: str | None) -> tuple[int, str, str]:
        """Where and how to add a new line at the end of the block body.

        Returns (position, line prefix, text to append after the new line).
        """
        layout = self._layout
        declarations = layout.declarations
        if declarations:
            last = declarations[-1]
            if self._text[last.span_end - 1 : last.span_end] == "\n":
                return last.span_end, last.indent, ""
            return last.span_end, " ", ""

        body = self._text[layout.body_start : layout.body_end]
        if "\n" not in body:
            closing_indent = _line_indent(self._text, layout.body_end)
            inner = indent_hint or closing_indent + _indent_unit(closing_indent)
            return layout.body_start, "\n" + inner, "\n" + closing_indent

        closing_line_start = self._text.rfind("\n", 0, layout.body_end) + 1
        closing_indent = _line_indent(self._text, layout.body_end)
        inner = indent_hint or closing_indent + _indent_unit(closing_indent)
        return closing_line_start, inner, ""

    def _declaration_insert(self, entry: CompositionEntry, index: int) -> tuple[int, int, str]:
        declarations = self._layout.declarations
        module = entry.module or module_name(entry.name)
        variant = entry.variant or variant_name(entry.name)
        line = f"{variant}: {module} = {index},"

        position, prefix, suffix = self._body_insert_point(None)
        if declarations and not declarations[-1].has_comma:
            # the new declaration needs a separator after the current last one
            last = declarations[-1]
            tail = self._text[last.content_end : position]
            if prefix == " ":
                return last.content_end, last.content_end, f", {line}"
            return last.content_end, position, "," + tail + prefix + line + "\n"

        if prefix == " ":
            return position, position, f" {line}"
        if prefix.startswith("\n"):
            return position, position, prefix + line + suffix
        return position, position, prefix + line + "\n" + suffix

    def _set_watermark(self, value: int) -> None:
        layout = self._layout
        marker = f"// palletkit: next-index = {value}"
        if layout.watermark_span is not None:
            start, end = layout.watermark_span
            self._apply([(start, end, marker)])
            return

        position, prefix, suffix = self._body_insert_point(None)
        if prefix == " ":
            self._apply([(position, position, f" {marker}\n")])
        elif prefix.startswith("\n"):
            self._apply([(position, position, prefix + marker + suffix)])
        else:
            self._apply([(position, position, prefix + marker + "\n" + suffix)])


# ============================================================================
# Scanning
# ============================================================================


def _error(path: Path, text: str, position: int, message: str) -> CompositionParseError:
    line = text.count("\n", 0, position) + 1
    col = position - (text.rfind("\n", 0, position) + 1) + 1
    return CompositionParseError(path, message, line, col)


def _mask(path: Path, text: str) -> str:
    """Blank out comments and string/char literals, keeping offsets and newlines."""
    out = list(text)
    n = len(text)
    i = 0

    def blank(start: int, end: int) -> None:
        for j in range(start, end):
            if out[j] != "\n":
                out[j] = " "

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if ch == "/" and nxt == "/":
            end = text.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
            continue

        if ch == "/" and nxt == "*":
            depth = 1
            j = i + 2
            while j < n and depth:
                if text.startswith("/*", j):
                    depth += 1
                    j += 2
                elif text.startswith("*/", j):
                    depth -= 1
                    j += 2
                else:
                    j += 1
            if depth:
                raise _error(path, text, i, "unterminated block comment")
            blank(i, j)
            i = j
            continue

        if ch in "rb" and (i == 0 or not (text[i - 1].isalnum() or text[i - 1] == "_")):
            raw = _RAW_STRING_RE.match(text, i)
            if raw is not None:
                terminator = '"' + raw.group(1)
                end = text.find(terminator, raw.end())
                if end == -1:
                    raise _error(path, text, i, "unterminated raw string literal")
                end += len(terminator)
                blank(i, end)
                i = end
                continue

        if ch == '"':
            j = i + 1
            while j < n and text[j] != '"':
                j += 2 if text[j] == "\\" else 1
            if j >= n:
                raise _error(path, text, i, "unterminated string literal")
            blank(i, j + 1)
            i = j + 1
            continue

        if ch == "'":
            if nxt == "\\":
                end = text.find("'", i + 2)
                if end != -1:
                    blank(i, end + 1)
                    i = end + 1
                    continue
            elif i + 2 < n and text[i + 2] == "'":
                blank(i, i + 3)
                i += 3
                continue
            # lifetime
            i += 1
            continue

        i += 1

    return "".join(out)


def _match_close(path: Path, text: str, code: str, open_pos: int, *, angle: bool = False) -> int:
    """Position of the bracket closing the one at `open_pos`."""
    stack = [code[open_pos]]
    i = open_pos + 1
    while i < len(code):
        ch = code[i]
        if ch in _OPENERS and (angle or ch != "<"):
            stack.append(ch)
        elif ch in _CLOSERS and (angle or ch != ">"):
            if stack[-1] != _CLOSERS[ch]:
                raise _error(path, text, i, f"mismatched '{ch}'")
            stack.pop()
            if not stack:
                return i
        i += 1
    raise _error(path, text, open_pos, f"unclosed '{code[open_pos]}'")


def _line_start(text: str, position: int) -> int:
    return text.rfind("\n", 0, position) + 1


def _line_indent(text: str, position: int) -> str:
    start = _line_start(text, position)
    end = start
    while end < len(text) and text[end] in " \t":
        end += 1
    return text[start:end]


def _indent_unit(indent: str) -> str:
    return "\t" if "\t" in indent or not indent else "    "


def _split_declarations(code: str, start: int, end: int) -> list[tuple[int, int, bool]]:
    """Split the block body at top-level commas.

    Returns (segment start, segment end, ends with comma) triples where the
    segment end is the comma position (or `end` for the final segment).
    """
    segments: list[tuple[int, int, bool]] = []
    depth = 0
    seg_start = start
    for i in range(start, end):
        ch = code[i]
        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            depth -= 1
        elif ch == "," and depth == 0:
            segments.append((seg_start, i, True))
            seg_start = i + 1
    if code[seg_start:end].strip():
        segments.append((seg_start, end, False))
    return segments


def _scan(path: Path, text: str) -> _Layout:
    code = _mask(path, text)

    invocation = _CONSTRUCT_RUNTIME_RE.search(code)
    if invocation is None:
        raise CompositionParseError(path, "couldn't find construct_runtime call")

    paren_open = invocation.end() - 1
    paren_close = _match_close(path, text, code, paren_open)
    brace_open = code.find("{", paren_open, paren_close)
    if brace_open == -1:
        raise _error(path, text, paren_open, "couldn't find runtime pallets config inside construct_runtime")
    brace_close = _match_close(path, text, code, brace_open)

    layout = _Layout(
        invocation_start=_line_start(text, invocation.start()),
        body_start=brace_open + 1,
        body_end=brace_close,
    )

    body_text = text[layout.body_start : layout.body_end]
    watermark = _WATERMARK_RE.search(body_text)
    if watermark is not None:
        layout.watermark = int(watermark.group("index"))
        layout.watermark_span = (
            layout.body_start + watermark.start(),
            layout.body_start + watermark.end(),
        )

    implicit_next = 0
    for seg_start, seg_end, has_comma in _split_declarations(code, layout.body_start, layout.body_end):
        match = _DECLARATION_RE.match(code[seg_start:seg_end])
        if match is None:
            first = seg_start + len(code[seg_start:seg_end]) - len(code[seg_start:seg_end].lstrip())
            raise _error(path, text, first, "unrecognized pallet declaration in construct_runtime")

        index = int(match.group("index")) if match.group("index") is not None else implicit_next
        implicit_next = index + 1

        module = re.split(r"\s*(?:::|<)", match.group("path"), maxsplit=1)[0]
        variant = match.group("variant")

        content_start = seg_start + match.start("variant")
        content_end = seg_start + len(code[seg_start:seg_end].rstrip())
        span_start = _block_start(text, code, seg_start, content_start)
        span_end = _block_end(text, code, seg_end + 1 if has_comma else content_end, layout.body_end)

        layout.declarations.append(
            _Declaration(
                entry=CompositionEntry(
                    name=module,
                    index=index,
                    variant=variant,
                    module=module,
                    has_config_stub=_find_config_impl(code, module) is not None,
                ),
                span_start=span_start,
                span_end=span_end,
                content_end=content_end,
                has_comma=has_comma,
                explicit_index=match.group("index") is not None,
                indent=_line_indent(text, content_start),
            )
        )

    return layout


def _block_start(text: str, code: str, seg_start: int, content_start: int) -> int:
    """Start of a declaration's block: its first line, or its first leading comment line.

    Comments separated from the declaration by a blank line belong to
    whatever precedes them and stay put.
    """
    start = _line_start(text, content_start)
    if start < seg_start or text[start:content_start].strip():
        return content_start
    while start > seg_start:
        prev_start = _line_start(text, start - 1)
        if prev_start < seg_start:
            break
        line = text[prev_start:start]
        if not line.strip() or code[prev_start:start].strip():
            break
        start = prev_start
    return start


def _block_end(text: str, code: str, position: int, limit: int) -> int:
    """Extend past trailing same-line whitespace/comment through the newline."""
    newline = text.find("\n", position, limit)
    if newline != -1 and not code[position:newline].strip():
        return newline + 1
    end = position
    while end < limit and text[end] in " \t":
        end += 1
    return end


def _find_config_impl(code: str, module: str) -> tuple[int, int] | None:
    """Span of `impl <module>::Config for Runtime { ... }` in masked code."""
    pattern = re.compile(
        r"\bimpl\s*(?:<[^>]*>\s*)?"
        + re.escape(module)
        + r"\s*::\s*Config\s*(?:<[^>]*>\s*)?for\s+Runtime\s*\{"
    )
    match = pattern.search(code)
    if match is None:
        return None
    open_pos = match.end() - 1
    depth = 0
    for i in range(open_pos, len(code)):
        if code[i] == "{":
            depth += 1
        elif code[i] == "}":
            depth -= 1
            if depth == 0:
                return match.start(), i + 1
    return None


def _line_span(text: str, span: tuple[int, int], *, swallow_blank_line: bool) -> tuple[int, int, str]:
    """Widen a span to whole lines, optionally eating one following blank line."""
    start, end = span
    line_start = _line_start(text, start)
    if not text[line_start:start].strip():
        start = line_start
    newline = text.find("\n", end)
    if newline != -1 and not text[end:newline].strip():
        end = newline + 1
        if swallow_blank_line:
            following = text.find("\n", end)
            if following != -1 and not text[end:following].strip():
                end = following + 1
    return start, end, ""
