#!/usr/bin/env python3
"""
啟動 CareWatch Web 服務

Usage:
    python scripts/run_web.py
    python scripts/run_web.py --port 8080
    python scripts/run_web.py --config config/settings.yaml --simulate
"""

import argparse
import logging

import uvicorn

from carewatch.core.config import load_config
from carewatch.service import build_service
from carewatch.web.app import create_app


def main():
    parser = argparse.ArgumentParser(description="啟動 CareWatch Web 服務")
    parser.add_argument(
        "--config",
        type=str,
        default="config/settings.yaml",
        help="設定檔路徑（預設: config/settings.yaml）",
    )
    parser.add_argument("--host", type=str, default=None, help="綁定的主機位址（預設取自設定檔）")
    parser.add_argument("--port", type=int, default=None, help="監聽的埠號（預設取自設定檔）")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="同時啟動生命徵象模擬器",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config(args.config)
    if args.simulate:
        config.simulator.enabled = True
    host = args.host or config.web.host
    port = args.port or config.web.port

    store, engine, simulator = build_service(config)
    app = create_app(store=store, engine=engine)

    print("\n" + "=" * 50)
    print("🩺 CareWatch")
    print("=" * 50)
    print(f"  API 文檔:   http://localhost:{port}/docs")
    print(f"  即時推播:   ws://localhost:{port}/ws/devices/<device_id>")
    if simulator is not None:
        print(f"  模擬裝置:   {simulator.device_id}")
    print("=" * 50)
    print("按 Ctrl+C 停止服務\n")

    if simulator is not None:
        simulator.start()
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    finally:
        if simulator is not None:
            simulator.stop()
        store.close()


if __name__ == "__main__":
    main()
