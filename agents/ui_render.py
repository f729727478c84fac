"""UI rendering agent — prepare the view model the web UI renders.

Inputs:
    - every upstream output (fetcher through reporter)
Outputs:
    - view: tabs, radar chart series, speaker timeline, sentiment label
    - view.json (saved to the run's work directory)
"""

from typing import Mapping

from agents.base import BaseAgent
from lib.registry import AgentKind
from lib.results import merge_outputs
from lib.view import build_view


class UIRenderAgent(BaseAgent):
    kind = AgentKind.UI_RENDER
    name = "ui_render"

    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        by_kind = {}
        for output in inputs.values():
            try:
                by_kind[AgentKind(output.get("_agent"))] = output
            except ValueError:
                continue

        preview = merge_outputs(
            by_kind,
            run_id=self.context.run_id,
            video_url=self.source.reference if self.source else "",
        )
        view = build_view(preview)
        self.save_json("view.json", view)
        self.report_progress(1, 1)

        self.logger.info(f"View ready: tabs {view['tabs']}")
        return {"view": view}
