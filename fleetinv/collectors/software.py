"""
Collecteur de logiciels installés pour l'agent d'inventaire

Sources utilisées selon la plateforme :
- Windows : clés "Uninstall" du registre (64 et 32 bits)
- Linux : dpkg ou rpm
"""

import sys
from typing import List

from ..core.protocol import SoftwareEntry
from .base import BaseCollector


UNINSTALL_KEYS = [
    r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall",
    r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall",
]


class SoftwareCollector(BaseCollector):
    """
    Collecteur de logiciels installés
    """

    def collect(self) -> List[SoftwareEntry]:
        """
        Collecte tous les logiciels installés

        Returns:
            list: Logiciels dédupliqués et triés par nom
        """
        self._start_collection()

        if sys.platform == "win32":
            entries = self._safe_execute(self._collect_windows_registry, "Erreur registre", [])
        else:
            entries = self._collect_linux_dpkg()
            if not entries:
                entries = self._collect_linux_rpm()

        entries = self._deduplicate(entries)
        self.logger.info(f"Collecté {len(entries)} logiciels")

        self._end_collection()
        return entries

    def _collect_windows_registry(self) -> List[SoftwareEntry]:
        import winreg

        entries = []
        for path in UNINSTALL_KEYS:
            try:
                key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, path)
            except OSError as e:
                self.logger.debug(f"Erreur lecture registre {path}: {e}")
                continue

            with key:
                subkey_count = winreg.QueryInfoKey(key)[0]
                for index in range(subkey_count):
                    subkey_name = winreg.EnumKey(key, index)
                    with winreg.OpenKey(key, subkey_name) as subkey:
                        entry = self._read_uninstall_entry(winreg, subkey)
                    if entry:
                        entries.append(entry)

        self.logger.debug(f"Registre: {len(entries)} applications trouvées")
        return entries

    def _read_uninstall_entry(self, winreg, subkey):
        def value(name):
            try:
                return winreg.QueryValueEx(subkey, name)[0]
            except FileNotFoundError:
                return None

        name = self._clean_string(value("DisplayName"))
        # Composants système et mises à jour sans nom affiché
        if not name or value("SystemComponent") == 1:
            return None

        return SoftwareEntry(
            name=name,
            version=self._clean_string(value("DisplayVersion")),
            publisher=self._clean_string(value("Publisher")) or None,
        )

    def _collect_linux_dpkg(self) -> List[SoftwareEntry]:
        output = self._execute_command(
            ["dpkg-query", "-W", "-f=${Status}\t${Package}\t${Version}\t${Maintainer}\n"]
        )
        if not output:
            return []

        entries = []
        for line in output.splitlines():
            parts = line.split('\t')
            if len(parts) < 3 or not parts[0].endswith('installed'):
                continue
            entries.append(SoftwareEntry(
                name=parts[1],
                version=parts[2],
                publisher=self._clean_string(parts[3]) if len(parts) > 3 else None,
            ))

        self.logger.debug(f"dpkg: {len(entries)} packages trouvés")
        return entries

    def _collect_linux_rpm(self) -> List[SoftwareEntry]:
        output = self._execute_command(
            ["rpm", "-qa", "--queryformat", "%{NAME}\t%{VERSION}-%{RELEASE}\t%{VENDOR}\n"]
        )
        if not output:
            return []

        entries = []
        for line in output.splitlines():
            parts = line.split('\t')
            if len(parts) < 2:
                continue
            vendor = parts[2] if len(parts) > 2 and parts[2] != '(none)' else None
            entries.append(SoftwareEntry(name=parts[0], version=parts[1], publisher=vendor))

        self.logger.debug(f"rpm: {len(entries)} packages trouvés")
        return entries

    def _deduplicate(self, entries: List[SoftwareEntry]) -> List[SoftwareEntry]:
        seen = set()
        unique = []
        for entry in entries:
            key = (entry.name.lower(), entry.version, entry.publisher or '')
            if key not in seen:
                seen.add(key)
                unique.append(entry)
        unique.sort(key=lambda e: e.name.lower())
        return unique
