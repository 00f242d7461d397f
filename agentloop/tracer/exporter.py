"""Writes finished run traces as YAML documents.

Each file holds a ``summary`` of the run followed by the full span tree
under ``trace``.
"""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from agentloop.tracer.span import Span, SpanKind

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


def summarize_run(root: Span) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "agent": root.name,
        "status": root.status,
        "steps": len([s for s in root.children if s.kind == SpanKind.STEP]),
        "llm_calls": len(root.find(SpanKind.LLM_CALL)),
        "tool_calls": len(root.find(SpanKind.TOOL_CALL)),
        "llm_token_usage": root.llm_token_usage(),
    }
    if "exit_reason" in root.attributes:
        summary["exit_reason"] = root.attributes["exit_reason"]
    if root.duration_ms is not None:
        summary["duration_ms"] = round(root.duration_ms, 2)
    return summary


class YAMLExporter:
    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export(self, root_span: Span, filename: str | None = None) -> Path:
        """Write *root_span* and return the file's path.

        The default filename is ``trace_<timestamp>_<agent>_<span id>.yaml``.
        """
        if filename is None:
            ts = root_span.start_time.strftime("%Y%m%d_%H%M%S")
            agent = _UNSAFE.sub("_", root_span.name) or "run"
            filename = f"trace_{ts}_{agent}_{root_span.span_id}.yaml"

        document = {
            "exported_at": datetime.now().isoformat(),
            "summary": summarize_run(root_span),
            "trace": root_span.to_dict(),
        }
        path = self.output_dir / filename
        with open(path, "w", encoding="utf-8") as fh:
            yaml.safe_dump(document, fh, default_flow_style=False, allow_unicode=True, sort_keys=False)

        logger.info("Trace of %s exported to %s", root_span.name, path)
        return path
