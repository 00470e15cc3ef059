import logging
import signal
import sys

import uvicorn

from carewatch.core.config import load_config
from carewatch.service import build_service
from carewatch.web.app import create_app


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = load_config()
    store, engine, simulator = build_service(config)

    # 啟動生命徵象模擬器
    if simulator is not None:
        simulator.start()

    def shutdown() -> None:
        if simulator is not None:
            simulator.stop()
        store.close()

    # 設定訊號處理器，確保優雅關閉
    def signal_handler(_signum: int, _frame: object) -> None:
        logging.info("收到終止訊號，正在關閉...")
        shutdown()
        sys.exit(0)

    _ = signal.signal(signal.SIGTERM, signal_handler)

    try:
        app = create_app(store=store, engine=engine)
        uvicorn.run(app, host=config.web.host, port=config.web.port, log_level="info")
    finally:
        shutdown()


if __name__ == "__main__":
    main()
