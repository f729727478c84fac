#!/usr/bin/env python3
"""ThoughtGraph MCP Server — exposes video discussion analysis as tools for AI agents.

Usage:
    # Run directly
    python mcp_server.py
"""

import json
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP

from agents import default_registry
from agents.pipeline import create_run
from lib.config import load_config
from lib.errors import PipelineError, PipelineFailed

# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

ROOT_DIR = Path(__file__).resolve().parent
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
# stdout carries the MCP protocol, so logs go to stderr
logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, stream=sys.stderr)
logger = logging.getLogger("thoughtgraph-mcp")

mcp = FastMCP(
    "thoughtgraph",
    instructions="ThoughtGraph — multi-agent analysis of video discussions. "
    "Identifies speakers, transcribes, and scores emotion, facts, bias, credibility and communication.",
)

# Load .env on import so all tools have access to API keys
load_dotenv(ROOT_DIR / ".env")

REQUIRED_KEYS = [
    "GOOGLE_AI_STUDIO_KEY",
    "OPENROUTER_API_KEY",
    "DEEPGRAM_API_KEY",
    "YOUTUBE_API_KEY",
]


# ===========================================================================
# SETUP & ENVIRONMENT TOOLS
# ===========================================================================


@mcp.tool()
def check_prerequisites() -> str:
    """Check all prerequisites for running ThoughtGraph.

    Verifies: Python version, ffmpeg/ffprobe, API keys and the config file.
    Returns a status report with pass/fail for each check.
    """
    checks = []

    # Python version
    v = sys.version_info
    py_ok = v >= (3, 11)
    checks.append(f"{'PASS' if py_ok else 'FAIL'}: Python {v.major}.{v.minor}.{v.micro} (need 3.11+)")

    # ffmpeg / ffprobe
    for tool in ("ffmpeg", "ffprobe"):
        try:
            result = subprocess.run([tool, "-version"], capture_output=True, text=True, timeout=5)
            version_line = result.stdout.split("\n")[0] if result.stdout else "unknown"
            checks.append(f"PASS: {tool} installed ({version_line})")
        except (FileNotFoundError, subprocess.TimeoutExpired):
            checks.append(f"FAIL: {tool} not found")

    # API keys
    for key in REQUIRED_KEYS:
        present = bool(os.environ.get(key, ""))
        checks.append(f"{'PASS' if present else 'FAIL'}: {key} {'set' if present else 'missing'}")

    # Config
    try:
        config = load_config()
        checks.append(f"PASS: config loaded ({len(config.get('agents', {}))} agents configured)")
    except (OSError, ValueError) as e:
        checks.append(f"FAIL: config could not be loaded ({e})")

    passed = sum(1 for c in checks if c.startswith("PASS"))
    return f"{passed}/{len(checks)} checks passed\n\n" + "\n".join(checks)


# ===========================================================================
# PIPELINE TOOLS
# ===========================================================================


@mcp.tool()
def list_stages() -> str:
    """List the analysis stages with their services and dependencies."""
    registry = default_registry(load_config())
    lines = []
    for stage in registry.all():
        deps = ", ".join(sorted(stage.depends_on)) or "-"
        lines.append(f"{stage.id:>4}  {stage.name:<24} {stage.service_label:<40} after: {deps}")
    return "\n".join(lines)


@mcp.tool()
async def analyze_video(video_url: str) -> str:
    """Run the full analysis pipeline on a video and return the result.

    Args:
        video_url: YouTube URL or path to a local media file.

    Returns the analysis result as JSON, or the failure reason and the
    status of every stage.
    """
    logger.info(f"Analyzing {video_url}")
    try:
        run = create_run(video_url)
    except PipelineError as e:
        return f"Could not start analysis: {e}"

    try:
        result = await run.execute()
    except PipelineFailed as e:
        statuses = "\n".join(
            f"  {s.stage_id}: {s.status.value}" + (f" ({s.error})" if s.error else "")
            for s in run.snapshot()
        )
        missing = f"\nMissing stages: {', '.join(e.missing_stage_ids)}" if e.missing_stage_ids else ""
        return f"Analysis failed: {e.reason}{missing}\n\nStages:\n{statuses}"
    except PipelineError as e:
        return f"Analysis ended: {e}"

    return json.dumps(result.model_dump(mode="json", by_alias=True), indent=2)


if __name__ == "__main__":
    mcp.run()
