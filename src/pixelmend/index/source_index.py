"""Source indexing: which files declare which ids, classes and test hooks."""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path

from pixelmend.core.models import FileType

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = (
    ".html", ".htm", ".css", ".scss", ".less", ".js", ".jsx", ".ts", ".tsx", ".vue",
)

KIND_ID = "id"
KIND_CLASS = "class"
KIND_DATA_TEST = "data-test"

# ---------------------------------------------------------------------------
# Extraction patterns
# ---------------------------------------------------------------------------

_ATTR_ID = re.compile(r"""(?<![\w-])id\s*=\s*["']([^"']+)["']""")
_ATTR_CLASS = re.compile(r"""(?<![\w-])class(?:Name)?\s*=\s*["']([^"']+)["']""")
_ATTR_DATA_TEST = re.compile(r"""(?<![\w-])data-test(?:id)?\s*=\s*["']([^"']+)["']""")

_CSS_SELECTOR_TOKEN = re.compile(r"([#.])(-?[A-Za-z_][\w-]*)")
_CSS_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)

_JS_BY_ID = re.compile(r"""getElementById\(\s*["']([^"']+)["']""")
_JS_BY_CLASS = re.compile(r"""getElementsByClassName\(\s*["']([^"']+)["']""")
_JS_QUERY = re.compile(r"""querySelector(?:All)?\(\s*["'`]([^"'`]+)["'`]""")
_JS_CLASSLIST = re.compile(r"""classList\.(?:add|remove|toggle|contains)\(\s*["']([^"']+)["']""")


@dataclass(frozen=True)
class SelectorDeclaration:
    """One place a selector is declared or used."""

    kind: str
    value: str
    line: int

    @property
    def selector(self) -> str:
        if self.kind == KIND_ID:
            return f"#{self.value}"
        if self.kind == KIND_CLASS:
            return f".{self.value}"
        return f'[data-test="{self.value}"]'


@dataclass
class SourceComponent:
    """An indexed source file."""

    path: Path
    file_type: FileType
    lines: list[str]
    declarations: list[SelectorDeclaration] = field(default_factory=list)
    modified: bool = False

    @property
    def selectors(self) -> set[str]:
        return {d.selector for d in self.declarations}

    def line(self, n: int) -> str:
        """Return line *n* (1-based) or an empty string when out of range."""
        if 1 <= n <= len(self.lines):
            return self.lines[n - 1]
        return ""

    def line_range(self, start: int, end: int) -> list[tuple[int, str]]:
        start = max(1, start)
        end = min(len(self.lines), end)
        return [(n, self.lines[n - 1]) for n in range(start, end + 1)]

    def find_pattern(self, pattern: str | re.Pattern) -> list[int]:
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [n for n, text in enumerate(self.lines, 1) if regex.search(text)]

    def declarations_for(self, kind: str, value: str) -> list[SelectorDeclaration]:
        return [d for d in self.declarations if d.kind == kind and d.value == value]


def extract_markup(lines: list[str]) -> list[SelectorDeclaration]:
    found: list[SelectorDeclaration] = []
    for n, text in enumerate(lines, 1):
        for m in _ATTR_ID.finditer(text):
            found.append(SelectorDeclaration(KIND_ID, m.group(1).strip(), n))
        for m in _ATTR_CLASS.finditer(text):
            for cls in m.group(1).split():
                found.append(SelectorDeclaration(KIND_CLASS, cls, n))
        for m in _ATTR_DATA_TEST.finditer(text):
            found.append(SelectorDeclaration(KIND_DATA_TEST, m.group(1).strip(), n))
    return found


def _blank_comments(text: str) -> str:
    # Keep newlines so line numbers survive.
    return _CSS_COMMENT.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), text)


def _selector_spans(text: str):
    """Yield ``(line, selector_text)`` for every selector prelude in *text*."""
    buf: list[str] = []
    buf_line = 1
    line = 1
    for ch in text:
        if ch == "{":
            prelude = "".join(buf).strip()
            if prelude and not prelude.startswith("@"):
                yield buf_line, prelude
            buf = []
        elif ch in ";}":
            buf = []
        elif buf or not ch.isspace():
            if not buf:
                buf_line = line
            buf.append(ch)
        if ch == "\n":
            line += 1


def extract_stylesheet(lines: list[str]) -> list[SelectorDeclaration]:
    text = _blank_comments("\n".join(lines))
    found: list[SelectorDeclaration] = []
    for start_line, prelude in _selector_spans(text):
        for offset, part in enumerate(prelude.split("\n")):
            for m in _CSS_SELECTOR_TOKEN.finditer(part):
                kind = KIND_ID if m.group(1) == "#" else KIND_CLASS
                found.append(SelectorDeclaration(kind, m.group(2), start_line + offset))
    return found


def _query_tokens(query: str, n: int) -> list[SelectorDeclaration]:
    found = []
    for m in _CSS_SELECTOR_TOKEN.finditer(query):
        kind = KIND_ID if m.group(1) == "#" else KIND_CLASS
        found.append(SelectorDeclaration(kind, m.group(2), n))
    return found


def extract_script(lines: list[str]) -> list[SelectorDeclaration]:
    found = extract_markup(lines)
    for n, text in enumerate(lines, 1):
        for m in _JS_BY_ID.finditer(text):
            found.append(SelectorDeclaration(KIND_ID, m.group(1).strip(), n))
        for m in _JS_BY_CLASS.finditer(text):
            for cls in m.group(1).split():
                found.append(SelectorDeclaration(KIND_CLASS, cls, n))
        for m in _JS_CLASSLIST.finditer(text):
            found.append(SelectorDeclaration(KIND_CLASS, m.group(1).strip(), n))
        for m in _JS_QUERY.finditer(text):
            found.extend(_query_tokens(m.group(1), n))
    return found


def _vue_declarations(lines: list[str]) -> list[SelectorDeclaration]:
    found = extract_script(lines)
    in_style = False
    style_lines: list[str] = []
    for text in lines:
        if re.search(r"<style\b", text):
            in_style = True
            style_lines.append("")
            continue
        if in_style and "</style>" in text:
            in_style = False
        style_lines.append(text if in_style else "")
    found.extend(extract_stylesheet(style_lines))
    return found


def extract_declarations(path: Path, lines: list[str]) -> list[SelectorDeclaration]:
    file_type = FileType.from_path(path)
    if path.suffix.lower() == ".vue":
        declarations = _vue_declarations(lines)
    elif file_type == FileType.STYLESHEET:
        declarations = extract_stylesheet(lines)
    elif file_type == FileType.MARKUP:
        declarations = extract_markup(lines)
    elif file_type == FileType.SCRIPT:
        declarations = extract_script(lines)
    else:
        declarations = []

    seen = set()
    unique = []
    for d in declarations:
        if d not in seen:
            seen.add(d)
            unique.append(d)
    return unique


class SourceIndex:
    """All indexed components plus reverse lookups by selector and id."""

    def __init__(self, components: list[SourceComponent] | None = None):
        self.components: dict[Path, SourceComponent] = {}
        self.by_selector: dict[str, set[Path]] = defaultdict(set)
        self.by_id: dict[str, set[Path]] = defaultdict(set)
        for component in components or []:
            self.add(component)

    def add(self, component: SourceComponent) -> None:
        component.path = component.path.resolve()
        self.components[component.path] = component
        for d in component.declarations:
            self.by_selector[d.selector].add(component.path)
            if d.kind == KIND_ID:
                self.by_id[d.value].add(component.path)

    def __len__(self) -> int:
        return len(self.components)

    def get(self, path: Path | str) -> SourceComponent | None:
        return self.components.get(Path(path).resolve())

    def _sorted(self, paths) -> list[SourceComponent]:
        return [self.components[p] for p in sorted(paths)]

    def find_by_selector(self, selector: str) -> list[SourceComponent]:
        return self._sorted(self.by_selector.get(selector, ()))

    def find_by_id(self, element_id: str) -> list[SourceComponent]:
        return self._sorted(self.by_id.get(element_id, ()))

    def find_by_class(self, class_name: str) -> list[SourceComponent]:
        return self.find_by_selector(f".{class_name}")

    def find_by_data_test(self, value: str) -> list[SourceComponent]:
        return self.find_by_selector(f'[data-test="{value}"]')

    def mark_modified(self, paths) -> int:
        """Flag components whose path is in *paths*.  Returns how many matched."""
        count = 0
        for raw in paths:
            component = self.get(raw)
            if component is not None and not component.modified:
                component.modified = True
                count += 1
        return count

    def modified_components(self) -> list[SourceComponent]:
        return [c for c in self.components.values() if c.modified]

    def is_modified(self, path: Path | str) -> bool:
        component = self.get(path)
        return bool(component and component.modified)


class SourceIndexer:
    """Walks a source root and builds a :class:`SourceIndex`."""

    def __init__(
        self,
        root: Path,
        exclude: list[str] | None = None,
        extensions: list[str] | tuple[str, ...] = DEFAULT_EXTENSIONS,
    ):
        self.root = Path(root).resolve()
        self.exclude = exclude or []
        self.extensions = {e.lower() for e in extensions}

    def _collect_files(self) -> list[Path]:
        """Collect all indexable files, excluding configured patterns."""
        if self.root.is_file():
            return [self.root]
        if not self.root.is_dir():
            logger.warning("Source root %s does not exist", self.root)
            return []

        files: list[Path] = []
        for path in self.root.rglob("*"):
            if not path.is_file() or path.suffix.lower() not in self.extensions:
                continue
            rel = path.relative_to(self.root).as_posix()
            if any(excl.rstrip("/") in rel for excl in self.exclude):
                continue
            files.append(path)
        return sorted(files)

    def build(self) -> SourceIndex:
        index = SourceIndex()
        for path in self._collect_files():
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", path, e)
                continue
            lines = text.splitlines()
            index.add(
                SourceComponent(
                    path=path,
                    file_type=FileType.from_path(path),
                    lines=lines,
                    declarations=extract_declarations(path, lines),
                )
            )
        logger.info("Indexed %d source file(s) under %s", len(index), self.root)
        return index
