"""Flat corpus file writer and reader."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TextIO

from knowledge_agent.types import CorpusPage, PageDocument

PAGE_HEADER = "## Page: "
SEPARATOR = "---"

_PAGE_START = re.compile(rf"^{re.escape(PAGE_HEADER)}(?P<url>\S+)[ \t]*$", flags=re.MULTILINE)


class CorpusWriter:
    """Single-writer, append-only corpus file.

    Opening truncates the target; each `write_page` appends one section:
    a page header line, the page title as a level-1 heading, the extracted
    blocks, and a separator line.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._handle: TextIO | None = None

    def __enter__(self) -> "CorpusWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = self.path.open("w", encoding="utf-8")
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def write_page(self, document: PageDocument) -> None:
        if self._handle is None:
            raise RuntimeError("CorpusWriter must be used as a context manager")
        self._handle.write(f"{PAGE_HEADER}{document.url}\n\n")
        self._handle.write(f"# {document.title}\n\n")
        self._handle.write(document.to_markdown())
        self._handle.write(f"\n{SEPARATOR}\n\n")
        self._handle.flush()


def read_corpus(path: str | Path) -> list[CorpusPage]:
    """Parse a corpus file back into its page sections.

    A file without page headers is read as a single untitled page, so plain
    text documents can be ingested the same way.
    """

    content = Path(path).read_text(encoding="utf-8")
    matches = list(_PAGE_START.finditer(content))
    if not matches:
        text = content.strip()
        return [CorpusPage(url=str(path), title="", text=text)] if text else []

    pages: list[CorpusPage] = []
    for i, match in enumerate(matches):
        body_end = matches[i + 1].start() if i + 1 < len(matches) else len(content)
        body = content[match.end() : body_end].strip()
        if body.endswith(SEPARATOR):
            body = body[: -len(SEPARATOR)].rstrip()
        title = ""
        if body.startswith("# "):
            first, _, rest = body.partition("\n")
            title = first[2:].strip()
            body = rest.strip()
        pages.append(CorpusPage(url=match.group("url"), title=title, text=body))
    return pages
