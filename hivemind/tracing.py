from __future__ import annotations

"""
Structured tracing of one item's pipeline run.

Tracers are purely observational: the orchestrator and the agents only ever
talk to them through ``GuardedTracer``, so a broken tracer is logged and
ignored instead of failing the item.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from loguru import logger

from .config import TRACE_DIR

PROMPT_PREVIEW_CHARS = 4_000


class Tracer(Protocol):
    def stage(self, stage: str, message: str) -> None: ...

    def ai_exchange(self, agent: str, prompt: str, response: str, provider: Optional[str] = None) -> None: ...

    def validation(self, agent: str, rows: Sequence[Dict[str, Any]]) -> None: ...

    def ranking(self, candidates: Sequence[Dict[str, Any]], winner_index: Optional[int]) -> None: ...

    def error(self, agent: str, message: str) -> None: ...

    def finalize(self) -> Optional[Path]: ...


class NullTracer:
    """Does nothing. Default when the caller does not ask for traces."""

    def stage(self, stage, message):
        pass

    def ai_exchange(self, agent, prompt, response, provider=None):
        pass

    def validation(self, agent, rows):
        pass

    def ranking(self, candidates, winner_index):
        pass

    def error(self, agent, message):
        pass

    def finalize(self):
        return None


class FileTracer:
    """
    Human-readable per-item debug log under ``logs/hivemind/``.

    Implemented as a dedicated loguru sink that only accepts records bound to
    this tracer's ``trace_id``; concurrent items never write into each
    other's files.
    """

    def __init__(self, task_id: str, item_id: str, directory: Path = TRACE_DIR):
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.trace_id = f"{task_id}:{item_id}:{uuid.uuid4().hex[:8]}"
        self.path = directory / f"task_{task_id}_item_{item_id}_{stamp}.log"
        trace_id = self.trace_id
        self._sink_id: Optional[int] = logger.add(
            str(self.path),
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <7} | {message}",
            filter=lambda record: record["extra"].get("trace_id") == trace_id,
            encoding="utf-8",
        )
        self._log = logger.bind(trace_id=trace_id, item_id=item_id)
        self._log.info("trace start task={} item={}", task_id, item_id)

    def stage(self, stage: str, message: str) -> None:
        self._log.info("[{}] {}", stage, message)

    def ai_exchange(self, agent: str, prompt: str, response: str, provider: Optional[str] = None) -> None:
        self._log.debug(
            "[AI:{}] provider={}\n--- prompt ---\n{}\n--- response ---\n{}",
            agent,
            provider or "-",
            (prompt or "")[:PROMPT_PREVIEW_CHARS],
            (response or "")[:PROMPT_PREVIEW_CHARS],
        )

    def validation(self, agent: str, rows: Sequence[Dict[str, Any]]) -> None:
        for row in rows:
            self._log.info("[VALIDATION:{}] {}", agent, json.dumps(row, ensure_ascii=False, default=str))

    def ranking(self, candidates: Sequence[Dict[str, Any]], winner_index: Optional[int]) -> None:
        self._log.info("[RANKING] {} candidates, winner={}", len(candidates), winner_index)
        for idx, cand in enumerate(candidates):
            marker = "*" if idx == winner_index else " "
            self._log.info(
                "{} #{} risk={} status={} total={} | {}",
                marker,
                idx,
                cand.get("risk_score"),
                cand.get("match_status"),
                cand.get("total_price"),
                str(cand.get("title", ""))[:80],
            )

    def error(self, agent: str, message: str) -> None:
        self._log.warning("[ERROR:{}] {}", agent, message)

    def finalize(self) -> Optional[Path]:
        if self._sink_id is None:
            return self.path
        self._log.info("trace end")
        logger.remove(self._sink_id)
        self._sink_id = None
        return self.path


class GuardedTracer:
    """Forwards to ``inner`` and swallows (but logs) anything it raises."""

    def __init__(self, inner: Optional[Tracer] = None):
        self._inner = inner if inner is not None else NullTracer()

    @property
    def inner(self) -> Tracer:
        return self._inner

    def _call(self, name: str, *args: Any) -> Any:
        try:
            return getattr(self._inner, name)(*args)
        except Exception as exc:
            logger.warning("Tracer.{} failed: {}", name, exc)
            return None

    def stage(self, stage: str, message: str) -> None:
        self._call("stage", stage, message)

    def ai_exchange(self, agent: str, prompt: str, response: str, provider: Optional[str] = None) -> None:
        self._call("ai_exchange", agent, prompt, response, provider)

    def validation(self, agent: str, rows: Sequence[Dict[str, Any]]) -> None:
        self._call("validation", agent, list(rows))

    def ranking(self, candidates: Sequence[Dict[str, Any]], winner_index: Optional[int]) -> None:
        self._call("ranking", list(candidates), winner_index)

    def error(self, agent: str, message: str) -> None:
        self._call("error", agent, message)

    def finalize(self) -> Optional[Path]:
        return self._call("finalize")


def guard(tracer: Optional[Tracer]) -> GuardedTracer:
    if isinstance(tracer, GuardedTracer):
        return tracer
    return GuardedTracer(tracer)


def summarize_rows(rows: List[Any]) -> List[Dict[str, Any]]:
    out = []
    for row in rows:
        if hasattr(row, "model_dump"):
            out.append(row.model_dump())
        elif isinstance(row, dict):
            out.append(row)
        else:
            out.append({"value": str(row)})
    return out
