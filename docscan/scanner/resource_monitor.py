"""
Resource Monitor.

Reports memory, battery and network conditions as a PressureLevel and
device-condition verdicts, and runs cleanup hooks on request. The
scheduler's backoff policy depends only on this interface.

Author: ML Engineering Team
"""

import gc
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

import psutil

from config import get_config
from ..utils.logger import get_logger

# Initialize module logger
logger = get_logger(__name__)

MB = 1024 * 1024

# Interface name prefixes of cellular modems
CELLULAR_PREFIXES = ('wwan', 'rmnet', 'ppp', 'cdc', 'usb', 'ccmni', 'pdp')
LOOPBACK_PREFIXES = ('lo',)


class PressureLevel(str, Enum):
    NORMAL = "normal"
    LOW = "low"
    CRITICAL = "critical"


@dataclass(frozen=True)
class DeviceStatus:
    """
    Point-in-time device readings; None means unknown.

    Attributes:
        available_memory_mb: Memory available to new allocations
        battery_level: Charge in [0, 1]
        charging: Whether external power is connected
        unmetered_network: Whether a non-cellular interface is up
    """
    available_memory_mb: Optional[float] = None
    battery_level: Optional[float] = None
    charging: Optional[bool] = None
    unmetered_network: Optional[bool] = None


class ResourceMonitor(ABC):
    """
    Base monitor: thresholds, pressure classification and cleanup hooks.

    Attributes:
        low_memory_mb: Below this, pressure is LOW
        critical_memory_mb: Below this, pressure is CRITICAL
        min_battery_level: Battery saver threshold
    """

    def __init__(
        self,
        low_memory_mb: Optional[float] = None,
        critical_memory_mb: Optional[float] = None,
        min_battery_level: Optional[float] = None
    ) -> None:
        self.low_memory_mb = low_memory_mb if low_memory_mb is not None else get_config("resources.low_memory_mb", 100)
        self.critical_memory_mb = (
            critical_memory_mb if critical_memory_mb is not None
            else get_config("resources.critical_memory_mb", 50)
        )
        self.min_battery_level = (
            min_battery_level if min_battery_level is not None
            else get_config("resources.min_battery_level", 0.2)
        )
        self._cleanup_callbacks: List[Callable[[bool], None]] = []

    @abstractmethod
    def status(self) -> DeviceStatus:
        """Read current device conditions."""

    def memory_pressure(self) -> PressureLevel:
        available = self.status().available_memory_mb
        if available is None:
            return PressureLevel.NORMAL
        if available < self.critical_memory_mb:
            return PressureLevel.CRITICAL
        if available < self.low_memory_mb:
            return PressureLevel.LOW
        return PressureLevel.NORMAL

    def check_device_conditions(self, wifi_only: bool, battery_saver: bool) -> Optional[str]:
        """
        Evaluate battery and network policy.

        Returns:
            None when a scan may start, else the reason it may not.
        """
        status = self.status()
        if wifi_only and status.unmetered_network is False:
            return "Wi-Fi connection required"
        if (
            battery_saver
            and status.battery_level is not None
            and status.battery_level < self.min_battery_level
            and not status.charging
        ):
            return f"battery too low ({status.battery_level:.0%})"
        return None

    def add_cleanup_callback(self, callback: Callable[[bool], None]) -> None:
        """Register ``callback(emergency)`` to run on every cleanup request."""
        self._cleanup_callbacks.append(callback)

    def request_cleanup(self, emergency: bool = False) -> None:
        """Run cleanup hooks, then a garbage collection pass."""
        for callback in self._cleanup_callbacks:
            callback(emergency)
        collected = gc.collect()
        logger.debug(f"Cleanup (emergency={emergency}) collected {collected} objects")


class PsutilResourceMonitor(ResourceMonitor):
    """
    Monitor backed by psutil.

    Example:
        >>> monitor = PsutilResourceMonitor()
        >>> monitor.memory_pressure()
        <PressureLevel.NORMAL: 'normal'>
    """

    def status(self) -> DeviceStatus:
        memory = psutil.virtual_memory()
        return DeviceStatus(
            available_memory_mb=memory.available / MB,
            battery_level=self._battery_level(),
            charging=self._charging(),
            unmetered_network=self._unmetered_network(),
        )

    @staticmethod
    def _battery():
        sensors_battery = getattr(psutil, "sensors_battery", None)
        if sensors_battery is None:
            return None
        try:
            return sensors_battery()
        except (OSError, RuntimeError):
            return None

    def _battery_level(self) -> Optional[float]:
        battery = self._battery()
        return battery.percent / 100.0 if battery is not None else None

    def _charging(self) -> Optional[bool]:
        battery = self._battery()
        return battery.power_plugged if battery is not None else None

    @staticmethod
    def _unmetered_network() -> Optional[bool]:
        try:
            stats = psutil.net_if_stats()
        except OSError:
            return None

        up = [name.lower() for name, s in stats.items() if s.isup and not name.lower().startswith(LOOPBACK_PREFIXES)]
        if not up:
            return False
        return any(not name.startswith(CELLULAR_PREFIXES) for name in up)
