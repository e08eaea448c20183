"""
Collecteur d'informations matériel pour l'agent d'inventaire

Ce module collecte :
- Modèle et numéro de série du poste
- Processeur et mémoire (psutil)
- Disques physiques
- Cartes réseau et adresses
"""

import os
import sys
import json
import socket
import platform
from typing import Any, Dict, List

import psutil

from ..core.protocol import DiskDrive, HardwareReport, NetworkAdapterInfo
from .base import BaseCollector


DMI_PATH = "/sys/class/dmi/id"
BIOS_REGISTRY_KEY = r"HARDWARE\DESCRIPTION\System\BIOS"
CPU_REGISTRY_KEY = r"HARDWARE\DESCRIPTION\System\CentralProcessor\0"


class HardwareCollector(BaseCollector):
    """
    Collecteur d'informations matériel

    Ce collecteur utilise psutil et les sources propres à chaque
    plateforme (registre Windows, /sys sous Linux).
    """

    def collect(self) -> HardwareReport:
        """
        Collecte toutes les informations matériel

        Returns:
            HardwareReport: Matériel du poste
        """
        self._start_collection()

        model = self._safe_execute(self._collect_model, "Erreur récupération modèle", {})
        processor = self._safe_execute(self._collect_processor, "Erreur récupération processeur", {})

        report = HardwareReport(
            manufacturer=model.get('manufacturer'),
            model_family=model.get('model_family'),
            serial_number=model.get('serial_number'),
            processor_name=processor.get('name'),
            processor_manufacturer=processor.get('manufacturer'),
            cores=processor.get('cores'),
            logical_cores=processor.get('logical_cores'),
            clock_speed=processor.get('clock_speed'),
            memory_total=self._safe_execute(
                lambda: psutil.virtual_memory().total,
                "Erreur récupération mémoire"
            ),
            disks=self._safe_execute(self._collect_disks, "Erreur récupération disques", []),
            network=self._safe_execute(self._collect_network, "Erreur récupération réseau", []),
        )

        self._end_collection()
        return report

    def _collect_model(self) -> Dict[str, Any]:
        if sys.platform == "win32":
            import winreg

            values = {}
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, BIOS_REGISTRY_KEY) as key:
                for field, value_name in (('manufacturer', 'SystemManufacturer'),
                                          ('model_family', 'SystemFamily'),
                                          ('serial_number', 'SystemSerialNumber')):
                    try:
                        values[field] = self._clean_string(winreg.QueryValueEx(key, value_name)[0])
                    except FileNotFoundError:
                        values[field] = None
            return values

        return {
            'manufacturer': self._read_dmi('sys_vendor'),
            'model_family': self._read_dmi('product_family') or self._read_dmi('product_name'),
            'serial_number': self._read_dmi('product_serial'),
        }

    def _read_dmi(self, name: str):
        try:
            with open(os.path.join(DMI_PATH, name), 'r', encoding='utf-8') as f:
                return self._clean_string(f.read()) or None
        except OSError:
            # Fichiers absents en conteneur ou illisibles sans droits root
            return None

    def _collect_processor(self) -> Dict[str, Any]:
        frequency = psutil.cpu_freq()
        processor = {
            'name': self._clean_string(platform.processor()) or None,
            'manufacturer': None,
            'cores': psutil.cpu_count(logical=False),
            'logical_cores': psutil.cpu_count(logical=True),
            'clock_speed': int(frequency.max or frequency.current) if frequency else None,
        }

        if sys.platform == "win32":
            import winreg

            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, CPU_REGISTRY_KEY) as key:
                processor['name'] = self._clean_string(winreg.QueryValueEx(key, "ProcessorNameString")[0])
                processor['manufacturer'] = self._clean_string(winreg.QueryValueEx(key, "VendorIdentifier")[0])
        elif os.path.exists('/proc/cpuinfo'):
            cpuinfo = {}
            with open('/proc/cpuinfo', 'r', encoding='utf-8') as f:
                for line in f:
                    if not line.strip():
                        # Fin du premier processeur
                        break
                    if ':' in line:
                        key, value = line.split(':', 1)
                        cpuinfo[key.strip()] = value.strip()
            processor['name'] = cpuinfo.get('model name') or processor['name']
            processor['manufacturer'] = cpuinfo.get('vendor_id')

        return processor

    def _collect_disks(self) -> List[DiskDrive]:
        if sys.platform == "win32":
            return self._collect_windows_disks()
        return self._collect_linux_disks()

    def _collect_windows_disks(self) -> List[DiskDrive]:
        output = self._execute_command([
            "powershell", "-NoProfile", "-Command",
            "Get-PhysicalDisk | Select-Object FriendlyName, SerialNumber, Size, DeviceId, MediaType | ConvertTo-Json"
        ])
        if not output:
            return []

        data = json.loads(output)
        if isinstance(data, dict):
            data = [data]

        return [
            DiskDrive(
                model=self._clean_string(disk.get('FriendlyName')) or None,
                serial_number=self._clean_string(disk.get('SerialNumber')) or None,
                size=int(disk['Size']) if disk.get('Size') is not None else None,
                device_id=str(disk.get('DeviceId')) if disk.get('DeviceId') is not None else None,
                media_type=str(disk.get('MediaType')) if disk.get('MediaType') is not None else None,
            )
            for disk in data
        ]

    def _collect_linux_disks(self) -> List[DiskDrive]:
        disks = []
        block_root = "/sys/block"
        if not os.path.isdir(block_root):
            return disks

        for device in sorted(os.listdir(block_root)):
            if device.startswith(('loop', 'ram', 'zram', 'dm-', 'sr')):
                continue
            device_dir = os.path.join(block_root, device)

            def read(relative_path):
                try:
                    with open(os.path.join(device_dir, relative_path), 'r', encoding='utf-8') as f:
                        return f.read().strip()
                except OSError:
                    return None

            sectors = read('size')
            rotational = read('queue/rotational')
            disks.append(DiskDrive(
                model=self._clean_string(read('device/model')) or None,
                serial_number=self._clean_string(read('device/serial')) or None,
                size=int(sectors) * 512 if sectors and sectors.isdigit() else None,
                device_id=f"/dev/{device}",
                media_type={'0': 'SSD', '1': 'HDD'}.get(rotational),
            ))
        return disks

    def _collect_network(self) -> List[NetworkAdapterInfo]:
        adapters = []
        for name, addresses in psutil.net_if_addrs().items():
            mac_address = None
            ip_addresses = []
            for address in addresses:
                if address.family == psutil.AF_LINK:
                    mac_address = address.address
                elif address.family in (socket.AF_INET, socket.AF_INET6):
                    ip_addresses.append(address.address.split('%', 1)[0])

            if ip_addresses and all(ip.startswith('127.') or ip == '::1' for ip in ip_addresses):
                continue
            adapters.append(NetworkAdapterInfo(name=name, mac_address=mac_address, ip_addresses=ip_addresses))

        return adapters
