"""
Collecteur de l'état courant du poste

- Volumes montés : capacité et espace libre
- Batteries : charge et alimentation secteur
"""

import sys
from typing import List

import psutil

from ..core.protocol import BatteryReport, Volume
from .base import BaseCollector


IGNORED_FILESYSTEMS = {'squashfs', 'tmpfs', 'devtmpfs', 'overlay', 'proc', 'sysfs'}


class StatusCollector(BaseCollector):
    """
    Collecteur des volumes et des batteries (psutil)
    """

    def collect(self):
        """
        Returns:
            tuple: (volumes, batteries)
        """
        return self.collect_volumes(), self.collect_batteries()

    def collect_volumes(self) -> List[Volume]:
        self._start_collection()

        volumes = []
        partitions = self._safe_execute(
            lambda: psutil.disk_partitions(all=False),
            "Erreur récupération partitions",
            []
        )
        seen = set()
        for partition in partitions:
            if partition.fstype in IGNORED_FILESYSTEMS or partition.mountpoint in seen:
                continue
            seen.add(partition.mountpoint)

            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (PermissionError, OSError) as e:
                # Lecteur amovible vide ou point de montage inaccessible
                self.logger.debug(f"Volume {partition.mountpoint} ignoré: {e}")
                continue

            drive_letter = partition.mountpoint
            if sys.platform == "win32":
                drive_letter = partition.mountpoint.rstrip('\\')

            volumes.append(Volume(
                drive_letter=drive_letter,
                capacity=usage.total,
                free_space=usage.free,
                label=None,
                file_system=partition.fstype or None,
            ))

        self._end_collection()
        return volumes

    def collect_batteries(self) -> List[BatteryReport]:
        battery = self._safe_execute(lambda: psutil.sensors_battery(), "Erreur récupération batterie")
        if battery is None:
            return []

        seconds_left = battery.secsleft
        if seconds_left in (psutil.POWER_TIME_UNKNOWN, psutil.POWER_TIME_UNLIMITED):
            seconds_left = None

        return [BatteryReport(
            id="BAT0",
            percent=int(round(battery.percent)),
            power_plugged=battery.power_plugged,
            seconds_left=int(seconds_left) if seconds_left is not None else None,
        )]
