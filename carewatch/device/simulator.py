"""
穿戴裝置模擬器

模擬 ESP32 手環：定期寫入心率/血氧/電量，並可手動觸發跌倒或 SOS 硬體訊號。
使用 APScheduler 在背景定期執行。
"""

import logging
import random
from typing import Protocol

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from carewatch.core.models import Vitals


logger = logging.getLogger(__name__)

HEART_RATE_RANGE = (60, 120)
SPO2_RANGE = (90, 100)
FALL_HEART_RATE = 110


class DeviceLink(Protocol):
    """模擬器寫入裝置資料的通道（同程序的 EmergencyEngine 或 HTTP 客戶端）"""

    def update_vitals(self, device_id: str, vitals: Vitals) -> object: ...
    def hardware_signal(self, device_id: str, signal: str) -> object: ...


def _clamp(value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, value))


class VitalsSimulator:
    """生命徵象模擬器

    自動模式只寫入 vitals，不改變裝置狀態；狀態變化只透過硬體訊號發生。

    Example:
        >>> simulator = VitalsSimulator(engine, "ESP32-AB12CD", interval_sec=3.0)
        >>> simulator.start()
        >>> simulator.trigger_fall()
        >>> simulator.stop()
    """

    def __init__(
        self,
        link: DeviceLink,
        device_id: str,
        interval_sec: float = 3.0,
        vitals: Vitals | None = None,
        rng: random.Random | None = None,
    ):
        """初始化模擬器

        Args:
            link: 裝置資料寫入通道
            device_id: 模擬的裝置 ID
            interval_sec: 自動更新間隔（秒）
            vitals: 初始生命徵象
            rng: 亂數產生器（測試時可固定種子）
        """
        self.link = link
        self.device_id = device_id
        self.interval_sec = interval_sec
        self.vitals = vitals or Vitals(heart_rate=75, spo2=98, battery=82)
        self.rng = rng or random.Random()

        self._scheduler: BackgroundScheduler | None = None
        self._is_running = False

    @property
    def is_running(self) -> bool:
        """模擬器是否正在執行"""
        return self._is_running

    def next_vitals(self) -> Vitals:
        """隨機漫步：心率 ±2（60-120），血氧 ±1（90-100）"""
        return Vitals(
            heart_rate=_clamp(self.vitals.heart_rate + self.rng.randint(-2, 2), HEART_RATE_RANGE),
            spo2=_clamp(self.vitals.spo2 + self.rng.randint(-1, 1), SPO2_RANGE),
            battery=self.vitals.battery,
        )

    def step(self) -> Vitals:
        """產生並寫入一次生命徵象"""
        self.vitals = self.next_vitals()
        try:
            self.link.update_vitals(self.device_id, self.vitals)
        except Exception as e:
            logger.error(f"模擬器同步失敗：{e}")
        return self.vitals

    def trigger_fall(self) -> None:
        """模擬跌倒：停止自動更新，心率飆升並送出跌倒訊號"""
        self.stop()
        self.vitals = Vitals(
            heart_rate=FALL_HEART_RATE, spo2=self.vitals.spo2, battery=self.vitals.battery
        )
        self.link.update_vitals(self.device_id, self.vitals)
        self.link.hardware_signal(self.device_id, "fall")
        logger.info(f"模擬跌倒訊號已送出：{self.device_id}")

    def trigger_sos(self) -> None:
        """模擬按下實體 SOS 按鈕"""
        self.stop()
        self.link.hardware_signal(self.device_id, "sos")
        logger.info(f"模擬 SOS 訊號已送出：{self.device_id}")

    def start(self) -> None:
        """啟動背景自動更新"""
        if self._is_running:
            logger.warning("模擬器已在執行中")
            return

        self._scheduler = BackgroundScheduler(daemon=True)
        self._scheduler.add_job(
            func=self.step,
            trigger=IntervalTrigger(seconds=self.interval_sec),
            id=f"vitals-{self.device_id}",
            name="生命徵象模擬",
            replace_existing=True,
        )
        self._scheduler.start()
        self._is_running = True

        logger.info(f"模擬器已啟動：{self.device_id}，每 {self.interval_sec} 秒更新一次")

    def stop(self) -> None:
        """停止背景自動更新"""
        if not self._is_running or self._scheduler is None:
            return

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._is_running = False

        logger.info("模擬器已停止")


__all__ = ["DeviceLink", "VitalsSimulator"]
