from __future__ import annotations

import argparse
import sys

import orjson

from .errors import ValidationFault
from .jobs import status_view, submit
from .orchestrator import build_workflow
from .schemas import ExploreRequest
from .storage import JobStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Submit an idea for exploration")
    parser.add_argument("idea", help="Idea text")
    parser.add_argument("--mode", choices=["business", "exploration"], default="business")
    parser.add_argument("--model", choices=["sonnet", "opus"], default="sonnet")
    parser.add_argument("--context", help="Additional context for the research")
    parser.add_argument("--update", action="store_true", help="Append to existing research for the same idea")
    parser.add_argument("--continue-from", dest="continue_from", help="Job id of a previous exploration to build on")
    parser.add_argument("--webhook-url", dest="webhook_url", help="Callback URL notified on completion")
    parser.add_argument("--callback-secret", dest="callback_secret", help="Shared secret used to sign the webhook")
    parser.add_argument("--no-run", action="store_true", help="Only create the job; do not run the pipeline")
    args = parser.parse_args(argv)

    store = JobStore()
    try:
        request = ExploreRequest.from_flags(
            idea=args.idea,
            update=args.update,
            continue_from=args.continue_from,
            mode=args.mode,
            model=args.model,
            context=args.context,
            webhook_url=args.webhook_url,
            callback_secret=args.callback_secret,
        )
        job = submit(store, request)
    except ValidationFault as exc:
        print(orjson.dumps({"error": str(exc)}).decode(), file=sys.stderr)
        return 2

    print(orjson.dumps({"job_id": job.id, "status": job.status}).decode())
    if args.no_run:
        return 0

    try:
        finished = build_workflow(store).run(job.id)
    except Exception as exc:
        failed = store.get(job.id)
        summary = {"job_id": job.id, "error_type": type(exc).__name__}
        summary.update(status_view(failed) if failed else {"status": "failed", "error": str(exc)})
        print(orjson.dumps(summary, option=orjson.OPT_SORT_KEYS).decode(), file=sys.stderr)
        return 1

    summary = {"job_id": finished.id}
    summary.update(status_view(finished))
    print(orjson.dumps(summary, option=orjson.OPT_SORT_KEYS).decode())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
