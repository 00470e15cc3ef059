#!/usr/bin/env python3
"""
ESP32 手環模擬器（透過 HTTP 連線到 CareWatch 服務）

Usage:
    python -m scripts.simulate_device ESP32-AB12CD
    python -m scripts.simulate_device ESP32-AB12CD --fall
    python -m scripts.simulate_device ESP32-AB12CD --sos --url http://localhost:8080
"""

import argparse
import logging
import time

import requests

from carewatch.core.models import Vitals
from carewatch.device.simulator import VitalsSimulator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class HttpDeviceLink:
    """DeviceLink implementation over the web API"""

    def __init__(self, base_url: str, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def update_vitals(self, device_id: str, vitals: Vitals) -> dict:
        response = requests.put(
            f"{self.base_url}/api/devices/{device_id}/vitals",
            json=vitals.to_dict(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def hardware_signal(self, device_id: str, signal: str) -> dict:
        response = requests.post(
            f"{self.base_url}/api/devices/{device_id}/signals/{signal}",
            timeout=self.timeout,
        )
        response.raise_for_status()
        result = response.json()
        logger.info(f"Signal {signal}: {result['outcome']} ({result['previous']} -> {result['status']})")
        return result


def main():
    parser = argparse.ArgumentParser(description="ESP32 手環模擬器")
    parser.add_argument("device_id", help="裝置 ID")
    parser.add_argument("--url", default="http://localhost:8000", help="CareWatch 服務位址")
    parser.add_argument("--interval", type=float, default=3.0, help="生命徵象更新間隔（秒）")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--fall", action="store_true", help="送出跌倒訊號後結束")
    group.add_argument("--sos", action="store_true", help="送出 SOS 訊號後結束")
    args = parser.parse_args()

    link = HttpDeviceLink(args.url)
    simulator = VitalsSimulator(link, args.device_id, interval_sec=args.interval)

    if args.fall:
        simulator.trigger_fall()
        return
    if args.sos:
        simulator.trigger_sos()
        return

    simulator.start()
    print(f"模擬 {args.device_id}，按 Ctrl+C 停止")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        simulator.stop()


if __name__ == "__main__":
    main()
