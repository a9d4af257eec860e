from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Agent Fleet Reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("fleets", help="Show per-fleet reconcile state")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--fleet", help="Only events for <namespace>/<name>")

    s_rec = sub.add_parser("reconcile", help="Reconcile one fleet now")
    s_rec.add_argument("--namespace", required=True)
    s_rec.add_argument("--name", required=True)
    s_rec.add_argument("--timeout", type=int, default=900, help="Seconds to wait; rolling restarts can take a while")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "fleets":
        _print(requests.get(f"{base}/fleets", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.fleet:
            params["fleet"] = args.fleet
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/fleets/{args.namespace}/{args.name}/reconcile", timeout=args.timeout)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
