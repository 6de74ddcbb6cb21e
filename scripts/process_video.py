#!/usr/bin/env python3
"""
Video Processing Script

Submit a video and run its pipeline in this process, without Celery.

Setup:
    1. Ensure PostgreSQL and Redis are running
    2. Copy .env.example to .env in the project root and fill in API keys
    3. Apply migrations: cd backend && alembic upgrade head

Usage:
    # Submit a video and wait for the result
    python scripts/process_video.py process "https://youtu.be/dQw4w9WgXcQ"
    python scripts/process_video.py process <url> --requester me@example.com --language en

    # Show job status or result
    python scripts/process_video.py status <job_id>
    python scripts/process_video.py result <job_id>

    # Deliver pending notifications once
    python scripts/process_video.py drain-notifications --batch-size 20

    # Provider usage over the last 7 days
    python scripts/process_video.py quota

Environment Variables (set in .env or environment):
    Required:
    - POSTGRES_* / REDIS_URL: Storage
    - GROQ_API_KEY and/or OPENAI_API_KEY: Transcription
    - GEMINI_API_KEY (or the key for TEXT_MODEL): Content analysis

    Optional:
    - SMTP_HOST, SMTP_USER, SMTP_PASSWORD: Email delivery
    - DEBUG: Enable verbose logging
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

# Add backend to path for imports (must be before tubelearn.* imports)
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from dotenv import load_dotenv

# Load environment variables from project root .env
project_root = Path(__file__).parent.parent
if (project_root / ".env").exists():
    load_dotenv(project_root / ".env")
else:
    load_dotenv(project_root / "backend" / ".env")

# Override DEBUG to suppress SQLAlchemy echo (engine uses echo=settings.DEBUG)
os.environ["DEBUG"] = "false"

# App imports (after sys.path setup and env loading)
from tubelearn.config import processing_settings
from tubelearn.db.redis import close_redis_pool
from tubelearn.dependencies import build_notification_queue, build_orchestrator
from tubelearn.services.processing import AsyncioJobDispatcher
from tubelearn.services.quota_monitor import QuotaMonitor


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Commands
# =============================================================================


async def process_video(url: str, requester: Optional[str], language: Optional[str]) -> int:
    """Submit a video and run it to completion in this process."""
    dispatcher = AsyncioJobDispatcher()
    orchestrator = build_orchestrator(dispatcher=dispatcher)

    submitted = await orchestrator.submit(url, requester=requester, language=language)
    print(f"📥 Job {submitted.job_id} (estimated {submitted.estimated_seconds}s)")
    if submitted.from_cache:
        print("♻️  Served from result cache")

    await dispatcher.wait_idle()

    result = await orchestrator.get_result(str(submitted.job_id))
    if result.status.value == "failed":
        print(f"❌ {result.message}")
        return 1

    title = result.snapshot.video_title if result.snapshot else None
    print(f"✅ Completed: {title or url}")
    print_json(result.result or {})
    return 0


async def show_status(job_id: str) -> int:
    orchestrator = build_orchestrator()
    snapshot = await orchestrator.get_status(job_id)
    print_json(snapshot.model_dump(mode="json"))
    return 0


async def show_result(job_id: str) -> int:
    orchestrator = build_orchestrator()
    result = await orchestrator.get_result(job_id)
    print_json(result.model_dump(mode="json"))
    return 0


async def drain_notifications(batch_size: Optional[int]) -> int:
    summary = await build_notification_queue().drain_batch(batch_size)
    print(
        f"📨 claimed={summary.claimed} sent={summary.sent} retried={summary.retried} "
        f"failed={summary.failed} recovered={summary.recovered}"
    )
    return 0


async def show_quota() -> int:
    stats = await QuotaMonitor(config=processing_settings).get_usage_statistics()
    print_json(stats)
    return 0


async def run(args: argparse.Namespace) -> int:
    try:
        if args.command == "process":
            return await process_video(args.url, args.requester, args.language)
        if args.command == "status":
            return await show_status(args.job_id)
        if args.command == "result":
            return await show_result(args.job_id)
        if args.command == "drain-notifications":
            return await drain_notifications(args.batch_size)
        if args.command == "quota":
            return await show_quota()
        return 2
    finally:
        await close_redis_pool()


def main() -> None:
    parser = argparse.ArgumentParser(description="Process videos into learning material")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    process_parser = subparsers.add_parser("process", help="Submit and run a video")
    process_parser.add_argument("url", help="Video URL")
    process_parser.add_argument("--requester", help="Email to notify on completion")
    process_parser.add_argument("--language", help="Transcription language hint (e.g. en)")

    status_parser = subparsers.add_parser("status", help="Show job status")
    status_parser.add_argument("job_id")

    result_parser = subparsers.add_parser("result", help="Show job result")
    result_parser.add_argument("job_id")

    drain_parser = subparsers.add_parser(
        "drain-notifications", help="Deliver one batch of notifications"
    )
    drain_parser.add_argument("--batch-size", type=int, default=None)

    subparsers.add_parser("quota", help="Show provider usage")

    args = parser.parse_args()
    setup_logging(args.debug)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
