"""
Downloadable renderings of scripts and comparison reports.

Three formats: plain text, pretty JSON and an HTML document that word
processors open as a .doc file. All of them are pure serialisations.
"""

from __future__ import annotations

import html
import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Sequence, Union

from pydantic import BaseModel

from .types import ScriptLine

logger = logging.getLogger(__name__)

EXPORT_KINDS = ("txt", "json", "doc")
MIME_TYPES = {
    "txt": "text/plain",
    "json": "application/json",
    "doc": "application/msword",
}
COMPARISON_FILENAME = "comparison_analysis"
SCRIPT_SEPARATOR = "-------------------"

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')

_DOC_TEMPLATE = (
    "<html xmlns:o='urn:schemas-microsoft-com:office:office' "
    "xmlns:w='urn:schemas-microsoft-com:office:word' "
    "xmlns='http://www.w3.org/TR/REC-html40'>\n"
    "<head><meta charset='utf-8'><title>Export</title></head>\n"
    "<body>{body}</body>\n"
    "</html>\n"
)
_CELL = '<td style="border:1px solid #ddd; padding:8px;">{}</td>'
_HEADER = '<th style="border:1px solid #ddd; padding:12px; text-align:left;">{}</th>'

Exportable = Union[str, dict, Sequence[Any], BaseModel]


@dataclass(frozen=True)
class Export:
    filename: str
    mime_type: str
    data: str


def _plain(content: Any) -> Any:
    """Pydantic models (alone or in lists) to plain JSON-able values."""
    if isinstance(content, BaseModel):
        return content.model_dump(by_alias=True)
    if isinstance(content, (list, tuple)):
        return [_plain(item) for item in content]
    return content


def script_filename(topic: str) -> str:
    return f"script_{topic[:10]}"


def _script_rows(lines: List[dict]) -> List[ScriptLine]:
    return [ScriptLine.model_validate(line) for line in lines]


def _render_txt(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            f"[{line.time_range}]\nVISUAL: {line.visual}\nAUDIO: {line.audio}\n{SCRIPT_SEPARATOR}"
            for line in _script_rows(content)
        )
    return json.dumps(content, indent=2, ensure_ascii=False)


def _render_doc(content: Any) -> str:
    if isinstance(content, str):
        body = (
            '<pre style="font-family: Arial; white-space: pre-wrap;">'
            f"{html.escape(content)}</pre>"
        )
    elif isinstance(content, list):
        rows = "".join(
            "<tr>"
            + _CELL.format(html.escape(line.time_range))
            + _CELL.format(html.escape(line.visual))
            + _CELL.format(html.escape(line.audio))
            + "</tr>"
            for line in _script_rows(content)
        )
        headers = "".join(_HEADER.format(name) for name in ("Timing", "Visual", "Audio"))
        body = (
            '<table style="border-collapse: collapse; width: 100%;">'
            f'<thead><tr style="background-color: #f2f2f2;">{headers}</tr></thead>'
            f"<tbody>{rows}</tbody></table>"
        )
    else:
        return json.dumps(content, ensure_ascii=False)
    return _DOC_TEMPLATE.format(body=body)


def render_export(content: Exportable, kind: str, basename: str = "export") -> Export:
    """Render content for download as ``<basename>.<kind>``."""
    if kind not in EXPORT_KINDS:
        raise ValueError(f"Unsupported export kind {kind!r}; expected one of {', '.join(EXPORT_KINDS)}")
    plain = _plain(content)
    if kind == "json":
        data = json.dumps(plain, indent=2, ensure_ascii=False)
    elif kind == "doc":
        data = _render_doc(plain)
    else:
        data = _render_txt(plain)
    return Export(filename=f"{basename}.{kind}", mime_type=MIME_TYPES[kind], data=data)


def write_export(export: Export, directory: Union[str, Path]) -> Path:
    target_dir = Path(directory).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / _UNSAFE_FILENAME_CHARS.sub("_", export.filename)
    path.write_text(export.data, encoding="utf-8")
    logger.info("Wrote %s (%d chars)", path, len(export.data))
    return path


__all__ = [
    "EXPORT_KINDS",
    "COMPARISON_FILENAME",
    "Export",
    "script_filename",
    "render_export",
    "write_export",
]
