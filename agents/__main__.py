"""CLI entry point: python -m agents --video-url https://www.youtube.com/watch?v=..."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from agents.pipeline import create_run
from lib.config import load_config
from lib.errors import PipelineError, PipelineFailed, RunCancelled


async def _run(args) -> int:
    config = load_config(args.config)
    run = create_run(args.video_url, config)

    async def show_progress():
        async for event in run.subscribe():
            if event.status.value == "running" and event.progress:
                continue
            line = f"  {event.stage_id:>4} {event.status.value}"
            if event.error:
                line += f" ({event.error})"
            print(line)

    watcher = asyncio.create_task(show_progress())
    try:
        result = await run.execute()
    except RunCancelled as e:
        print(f"\n{e}")
        return 130
    except PipelineFailed as e:
        print(f"\nPipeline failed: {e.reason}")
        if e.missing_stage_ids:
            print(f"Missing stages: {', '.join(e.missing_stage_ids)}")
        return 1
    finally:
        await watcher

    print(f"\nAnalysis complete: {result.id}")
    print(f"Title: {result.title}")
    print(f"Speakers: {', '.join(s.name for s in result.speakers) or 'none'}")
    print(f"Fact checks: {len(result.fact_checks)}, biases: {len(result.biases)}")
    if result.summary:
        print(f"\n{result.summary}")

    payload = result.model_dump(mode="json", by_alias=True)
    if args.output:
        Path(args.output).write_text(json.dumps(payload, indent=2))
        print(f"\nResult written to {args.output}")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="ThoughtGraph — multi-agent video discussion analysis"
    )
    parser.add_argument(
        "--video-url",
        required=True,
        help="YouTube URL or path to a local media file",
    )
    parser.add_argument(
        "--output", "-o",
        default=None,
        help="Write the analysis result JSON to this file",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.toml (defaults to THOUGHTGRAPH_CONFIG or config/config.toml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    # Configure logging
    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        code = asyncio.run(_run(args))
    except PipelineError as e:
        print(f"Error: {e}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
