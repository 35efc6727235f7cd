from __future__ import annotations

import argparse
import json
import logging
import time

from copilot_automation.automation.runtime import build_runtime
from copilot_automation.config.settings import get_settings

logger = logging.getLogger("run_automation")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the automation cycle once, or repeatedly with --interval."
    )
    parser.add_argument(
        "--user-id",
        type=str,
        default=None,
        help="Restrict the cycle to one user (default: all users).",
    )
    parser.add_argument(
        "--task-limit",
        type=int,
        default=None,
        help="Maximum due tasks processed per user (default: settings task_batch_size).",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help=(
            "Seconds between cycles. Pass 0 to use the configured loop interval "
            "(600s by default). Omit to run a single cycle."
        ),
    )
    return parser.parse_args()


def _run_once(runtime, *, user_id: str | None, task_limit: int | None) -> None:
    result = runtime.cycle.run(user_id=user_id, task_batch_size=task_limit)
    print(json.dumps(result.to_payload(), indent=2))


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    args = _parse_args()
    if args.task_limit is not None and args.task_limit <= 0:
        raise SystemExit("--task-limit must be a positive integer")

    settings = get_settings()
    runtime = build_runtime(settings)

    if args.interval is None:
        _run_once(runtime, user_id=args.user_id, task_limit=args.task_limit)
        return

    interval = args.interval or settings.automation_loop_interval_s
    logger.info("event=automation_loop_started interval_s=%s", interval)
    while True:
        try:
            _run_once(runtime, user_id=args.user_id, task_limit=args.task_limit)
        except Exception:  # noqa: BLE001
            logger.exception("event=automation_cycle_failed")
        time.sleep(interval)


if __name__ == "__main__":
    main()
