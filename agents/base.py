"""BaseAgent ABC — the invocation boundary every analysis agent implements."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Optional

from lib.config import agent_settings
from lib.errors import AgentError
from lib.llm import LLMClient, client_for
from lib.media import MediaSource
from lib.registry import AgentKind, StageDefinition

logger = logging.getLogger("thoughtgraph")


@dataclass
class AgentContext:
    """Everything an agent may touch besides its upstream outputs."""

    run_id: str
    config: dict
    source: Optional[MediaSource]
    work_dir: Path
    progress: Optional[Callable[[int], None]] = None


class BaseAgent(ABC):
    """Abstract base class for pipeline agents.

    An agent is bound to one stage of one run. `invoke` receives the outputs
    of the stage's dependencies keyed by stage id and returns a result dict;
    any failure surfaces as AgentError carrying the stage id.
    """

    kind: AgentKind
    name: str = "base"

    def __init__(self, stage: StageDefinition, context: AgentContext):
        self.stage = stage
        self.context = context
        self.config = context.config
        self.source = context.source
        self.work_dir = Path(context.work_dir)
        self.settings = agent_settings(self.config, self.kind)
        self.logger = logging.getLogger(f"thoughtgraph.{self.name}")
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def report_progress(self, current: int, total: int, detail: str = "") -> int:
        """Relay progress to the scheduler. Safe to call from worker threads."""
        percent = int(current / total * 100) if total > 0 else 0
        percent = max(0, min(100, percent))
        if detail:
            self.logger.debug(f"[{self.name}] {percent}% {detail}")
        callback = self.context.progress
        if callback is not None:
            if self._loop is not None:
                self._loop.call_soon_threadsafe(callback, percent)
            else:
                callback(percent)
        return percent

    @abstractmethod
    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        """Run the agent's core logic. Return a result dict."""
        ...

    async def invoke(self, inputs: Mapping[str, dict]) -> dict:
        """Execute with timing, logging and error wrapping."""
        self._loop = asyncio.get_running_loop()
        self.logger.info(f"[{self.name}] Starting...")
        start = time.time()

        try:
            result = await self.execute(inputs)
        except AgentError as e:
            self.logger.error(f"[{self.name}] Failed after {time.time() - start:.1f}s: {e}")
            raise
        except Exception as e:
            self.logger.error(f"[{self.name}] Failed after {time.time() - start:.1f}s: {e}")
            raise AgentError(self.stage.id, e) from e

        elapsed = time.time() - start
        result["_agent"] = self.name
        result["_elapsed_seconds"] = round(elapsed, 2)
        self.logger.info(f"[{self.name}] Completed in {elapsed:.1f}s")
        return result

    def upstream(self, inputs: Mapping[str, dict], kind: AgentKind) -> dict:
        """Find the output of the upstream stage run by an agent of `kind`."""
        for output in inputs.values():
            if output.get("_agent") == kind.value:
                return output
        raise AgentError(self.stage.id, f"malformed upstream data: no {kind.value} output")

    def llm(self, prefix: str = "") -> LLMClient:
        return client_for(self.config, self.settings, prefix)

    def work_path(self, *parts: str) -> Path:
        """Path inside the run's work directory; parent directories are created."""
        path = self.work_dir.joinpath(*parts)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path

    def save_json(self, filename: str, data: dict) -> Path:
        """Save a JSON artifact to the run's work directory."""
        path = self.work_path(filename)
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        return path


def transcript_excerpt(transcript: str, max_chars: int = 24000) -> str:
    """Trim a transcript for a prompt, keeping the opening and closing parts."""
    if len(transcript) <= max_chars:
        return transcript
    half = max_chars // 2
    return transcript[:half] + "\n[...]\n" + transcript[-half:]


class MetricGroupAgent(BaseAgent):
    """Scores one six-metric group (0-100 each) over the speaker-labelled transcript."""

    prompt: str = ""
    output_key: str = ""
    model_cls = None

    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        from lib.results import parse_metrics

        aggregated = self.upstream(inputs, AgentKind.SPEECH_AGGREGATION)
        transcript = transcript_excerpt(aggregated.get("transcript", ""))
        if not transcript.strip():
            raise AgentError(self.stage.id, "malformed upstream data: empty transcript")

        self.report_progress(1, 3, "requesting scores")
        payload = await self.llm().complete_json(self.prompt.format(content=transcript))
        self.report_progress(2, 3, "validating scores")

        if isinstance(payload, dict) and isinstance(payload.get(self.output_key), dict):
            payload = payload[self.output_key]
        metrics = parse_metrics(self.model_cls, payload if isinstance(payload, dict) else None)
        if metrics is None:
            raise AgentError(self.stage.id, f"model returned no {self.output_key}")

        self.report_progress(3, 3)
        return {self.output_key: metrics.model_dump()}
