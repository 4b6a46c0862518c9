#!/usr/bin/env python3
"""
Job Multi-Poster - Main Entry Point

Usage:
    # Run API server
    python main.py server

    # Post a stored job to all of its boards and wait for the result
    python main.py post <job_id>

    # Retry one failed posting
    python main.py retry <posting_id>

    # List configured boards
    python main.py boards
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger(__name__)


def check_environment(cfg) -> bool:
    """Warn about missing settings. Only the browser backend is mandatory."""
    missing = cfg.validate()
    if not missing:
        print("✅ All required settings present")
        return True

    print("⚠️  Missing settings:")
    for name in missing:
        print(f"  - {name}")
    if any(name.startswith("BROWSERBASE") for name in missing):
        print("\nBROWSER_ENV=BROWSERBASE needs both Browserbase settings.")
        return False
    print("\nBoards without a posting strategy will fail until an LLM key is set.")
    return True


def run_server(host: str, port: int, reload: bool = False):
    """Run the FastAPI server."""
    import uvicorn

    print(f"🚀 Starting server on {host}:{port}")
    uvicorn.run(
        "api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


async def _wait_for_completion(services, job_id: str, timeout: float) -> int:
    from core.notifier import JOB_COMPLETE, POSTING_UPDATE

    sub = services.notifier.subscribe(job_id)
    await services.scheduler.start()
    try:
        while True:
            event = await sub.get(timeout=timeout)
            p = event.payload
            if event.kind == POSTING_UPDATE:
                print(f"  {p.get('board_name') or p['board_id']}: {p['status']}"
                      + (f" - {p['error_message']}" if p.get("error_message") else ""))
            elif event.kind == JOB_COMPLETE:
                print(f"\nJob {job_id}: {p['overall_status']} "
                      f"({p['success_count']}/{p['total_count']} boards, AI cost ${p['total_cost']:.4f})")
                return 0 if p["overall_status"] == "completed" else 1
    except asyncio.TimeoutError:
        logger.error(f"Timed out waiting for job {job_id}")
        return 2
    finally:
        sub.close()
        await services.scheduler.stop()
        if services.driver is not None:
            await services.driver.close()


async def post_job(cfg, job_id: str, timeout: float) -> int:
    from api.main import build_services

    services = await build_services(cfg)
    job = await services.repository.load_job(job_id)
    if job is None:
        print(f"❌ Job {job_id} not found")
        return 1

    print(f"Posting '{job.title}' ({job.company})")
    services.scheduler.enqueue_job(job_id)
    return await _wait_for_completion(services, job_id, timeout)


async def retry_posting(cfg, posting_id: str, timeout: float) -> int:
    from api.main import build_services
    from core.errors import InvalidTransitionError

    services = await build_services(cfg)
    try:
        task = await services.scheduler.retry_posting(posting_id)
    except KeyError:
        print(f"❌ Posting {posting_id} not found")
        return 1
    except InvalidTransitionError as e:
        print(f"❌ {e}")
        return 1
    return await _wait_for_completion(services, task.job_id, timeout)


async def list_boards(cfg) -> int:
    from api.database import SqliteRepository
    from boards import BOARD_CATALOG, StrategyRegistry

    repository = SqliteRepository(cfg.DATABASE_PATH)
    await repository.init_database(BOARD_CATALOG)
    registry = StrategyRegistry()
    for board in await repository.list_boards():
        mode = "strategy" if board.name in registry else "discovery"
        state = "" if board.enabled else " (disabled)"
        print(f"{board.code or '-':<10} {board.name:<28} {mode:<10} {board.post_url}{state}")
    return 0


def main():
    """Main entry point."""
    from api.config import config
    from api.logging_config import setup_logging

    parser = argparse.ArgumentParser(
        description="Job Multi-Poster - post one job listing to many university job boards"
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    server_parser = subparsers.add_parser('server', help='Run API server')
    server_parser.add_argument('--host', default=config.HOST, help='Host to bind to')
    server_parser.add_argument('--port', type=int, default=config.PORT, help='Port to bind to')
    server_parser.add_argument('--reload', action='store_true', help='Enable auto-reload')

    post_parser = subparsers.add_parser('post', help='Post a stored job to its boards')
    post_parser.add_argument('job_id', help='Job identifier')
    post_parser.add_argument('--timeout', type=float, default=900.0, help='Seconds to wait between events')

    retry_parser = subparsers.add_parser('retry', help='Retry a failed posting')
    retry_parser.add_argument('posting_id', help='Posting identifier')
    retry_parser.add_argument('--timeout', type=float, default=900.0, help='Seconds to wait between events')

    subparsers.add_parser('boards', help='List configured boards')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging(config.LOG_LEVEL, Path(config.LOG_DIR))

    if args.command == 'boards':
        sys.exit(asyncio.run(list_boards(config)))

    if not check_environment(config):
        sys.exit(1)

    if args.command == 'server':
        run_server(args.host, args.port, args.reload)

    elif args.command == 'post':
        sys.exit(asyncio.run(post_job(config, args.job_id, args.timeout)))

    elif args.command == 'retry':
        sys.exit(asyncio.run(retry_posting(config, args.posting_id, args.timeout)))


if __name__ == "__main__":
    main()
