import argparse
import asyncio
import os

import uvicorn

from offline_pos.app.config import Settings
from offline_pos.app.db import LocalDatabase
from offline_pos.app.logs import json_log
from offline_pos.app.main import create_app
from offline_pos.app.runtime import build_runtime


def main():
    cfg = Settings()
    parser = argparse.ArgumentParser(description="Offline-first POS till agent")
    parser.add_argument("--init-db", action="store_true", help="Initialize local SQLite schema and exit")
    parser.add_argument(
        "--db",
        default=cfg.db_path,
        help="SQLite DB path (default: ./pos.sqlite). Useful to run multiple tills on one machine.",
    )
    parser.add_argument("--api-base-url", default=cfg.api_base_url, help="Backend base URL (POST /sales lives here)")
    parser.add_argument(
        "--host",
        default=cfg.host,
        help="HTTP host to bind (default: 127.0.0.1). Use 0.0.0.0 only if you explicitly want LAN exposure.",
    )
    parser.add_argument("--port", type=int, default=cfg.port, help="HTTP port (default: 7070)")
    parser.add_argument("--session", default=cfg.session_id, help="Cart session id restored on startup")
    parser.add_argument(
        "--drain-once",
        action="store_true",
        help="Submit every queued sale once (if the backend is reachable) and exit",
    )
    args = parser.parse_args()

    cfg.db_path = os.path.abspath(args.db)
    cfg.api_base_url = args.api_base_url.rstrip("/")
    cfg.host = args.host
    cfg.port = args.port
    cfg.session_id = args.session

    if args.init_db:
        LocalDatabase(cfg.db_path).init_schema()
        print("ok")
        return

    runtime = build_runtime(cfg)

    if args.drain_once:
        report = asyncio.run(_drain_once(runtime))
        if report is None:
            print("offline: nothing sent")
        else:
            print(f"acked={len(report.acked)} failed={len(report.failed)}")
        return

    app = create_app(runtime)
    public_host = "localhost" if args.host in {"127.0.0.1", "localhost"} else args.host
    json_log("info", "agent.start", db=cfg.db_path, api_base_url=cfg.api_base_url, session_id=cfg.session_id)
    print(f"POS Agent running on http://{public_host}:{args.port}")
    uvicorn.run(app, host=args.host, port=args.port, log_level="warning")


async def _drain_once(runtime):
    online = await runtime.client.health(timeout_s=runtime.settings.health_timeout_s)
    return await runtime.coordinator.notify_reachability(online)


if __name__ == "__main__":
    main()
