from __future__ import annotations

import argparse

import orjson

from .errors import ParseFault
from .jobs import status_view
from .schemas import JobFilter
from .storage import JobStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show job status or list jobs")
    parser.add_argument("job_id", nargs="?", help="Job id; omit to list jobs")
    parser.add_argument("--status", choices=["pending", "running", "completed", "failed"])
    parser.add_argument("--mode", choices=["business", "exploration"])
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--offset", type=int, default=0)
    args = parser.parse_args(argv)

    store = JobStore()
    if args.job_id:
        try:
            job = store.get(args.job_id)
        except ParseFault as exc:
            print(orjson.dumps({"error": "Job record unreadable", "detail": str(exc)}).decode())
            return 1
        if job is None:
            print(orjson.dumps({"error": "Job not found"}).decode())
            return 1
        print(orjson.dumps(status_view(job), option=orjson.OPT_SORT_KEYS).decode())
        return 0

    page = store.list(JobFilter(status=args.status, mode=args.mode), limit=args.limit, offset=args.offset)
    out = {
        "total": page.total,
        "jobs": [{"job_id": j.id, "created_at": j.created_at, **status_view(j)} for j in page.jobs],
    }
    print(orjson.dumps(out, option=orjson.OPT_SORT_KEYS).decode())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
