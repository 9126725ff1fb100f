from __future__ import annotations

"""Run one launch cycle headlessly and print the resulting state.

The attribution SDK and push platform are replaced by headless stand-ins so
the decision endpoint, persistence and timing can be exercised end to end.

Run:
  python launch/job/run_launch.py --af-status non-organic
  python launch/job/run_launch.py --offline
  python launch/job/run_launch.py --reset
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

# Ensure backend/ is importable as top-level `app` / `launch`.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

import httpx  # noqa: E402

from app.core.log import configure_logging, log_event  # noqa: E402
from app.core.settings import load_settings  # noqa: E402
from app.core.storage import build_store  # noqa: E402
from launch.adapters.headless import HeadlessAttributionSdk, HeadlessPushPlatform  # noqa: E402
from launch.core.bootstrap import build_orchestrator  # noqa: E402
from launch.core.reachability import ReachabilityMonitor  # noqa: E402
from launch.core.state import AuthorizationStatus, LaunchStateKind  # noqa: E402

logger = logging.getLogger("launchgate.job")


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run one launch decision cycle.")
    p.add_argument("--config", type=Path, default=None, help="YAML settings file")
    p.add_argument("--offline", action="store_true", help="start with no connectivity")
    p.add_argument("--af-status", default=None, help="deliver a conversion with this af_status")
    p.add_argument("--conversion-json", type=Path, default=None, help="deliver this conversion payload")
    p.add_argument("--conversion-delay", type=float, default=0.5)
    p.add_argument("--push-status", default=AuthorizationStatus.NOT_DETERMINED.value,
                   choices=[s.value for s in AuthorizationStatus])
    p.add_argument("--accept-push", action="store_true", help="answer the permission screen with accept")
    p.add_argument("--notification-url", default=None, help="pending notification URL at launch")
    p.add_argument("--reset", action="store_true", help="forget the determined mode first")
    return p.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    settings.log_status()
    store = build_store(settings)

    conversion = None
    if args.conversion_json is not None:
        conversion = json.loads(args.conversion_json.read_text(encoding="utf-8"))
    elif args.af_status:
        conversion = {"af_status": args.af_status}

    sdk = HeadlessAttributionSdk(conversion=conversion, delay=args.conversion_delay)
    platform = HeadlessPushPlatform(status=AuthorizationStatus(args.push_status))
    reachability = ReachabilityMonitor(connected=not args.offline)

    async with httpx.AsyncClient(timeout=settings.config_request_timeout_seconds) as client:
        orchestrator = build_orchestrator(
            settings,
            store,
            sdk=sdk,
            push_platform=platform,
            reachability=reachability,
            http_client=client,
        )
        try:
            if args.reset:
                orchestrator.reset()
            if args.notification_url:
                orchestrator.gatekeeper.handle_notification({"url": args.notification_url})

            state = await orchestrator.initialize()
            if state.kind == LaunchStateKind.AWAITING_PUSH_PERMISSION:
                if args.accept_push:
                    state = await orchestrator.on_permission_accepted()
                else:
                    state = await orchestrator.on_permission_skipped()

            log_event(logger, "launch_result", mode=orchestrator.mode.value, state=state.describe())
            print(json.dumps({"mode": orchestrator.mode.value, "state": state.describe()}))
        finally:
            await orchestrator.close()
    return 0


def cli(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    return asyncio.run(run(_parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(cli())
