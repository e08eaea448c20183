"""
Collecteur du système d'exploitation

Retourne le nom du poste, le système, sa version et le domaine
(ou groupe de travail) auquel le poste appartient.
"""

import os
import sys
import socket
import platform
from typing import Dict, Optional

from ..core.protocol import OsReport
from .base import BaseCollector


def get_computer_name() -> str:
    """Nom du poste tel qu'enregistré auprès du serveur"""
    if sys.platform == "win32":
        return os.environ.get("COMPUTERNAME") or socket.gethostname()
    return socket.gethostname()


class SystemCollector(BaseCollector):
    """
    Collecteur des informations système de base
    """

    def collect(self) -> OsReport:
        self._start_collection()

        report = OsReport(
            operating_system=self._get_os_name(),
            os_version=self._get_os_version(),
            computer_name=get_computer_name(),
            domain=self._safe_execute(self._get_domain, "Erreur récupération domaine"),
        )

        self._end_collection()
        return report

    def _get_os_name(self) -> str:
        if sys.platform == "win32":
            edition = self._safe_execute(platform.win32_edition, "Erreur récupération édition Windows")
            return f"Microsoft Windows {platform.release()} {edition or ''}".strip()

        if sys.platform == "darwin":
            return "macOS"

        os_release = self._read_os_release()
        return os_release.get('NAME') or platform.system()

    def _get_os_version(self) -> str:
        if sys.platform == "win32":
            return platform.version()
        if sys.platform == "darwin":
            return platform.mac_ver()[0] or platform.release()

        os_release = self._read_os_release()
        return os_release.get('VERSION') or platform.release()

    def _read_os_release(self) -> Dict[str, str]:
        values = {}
        try:
            with open('/etc/os-release', 'r', encoding='utf-8') as f:
                for line in f:
                    if '=' in line:
                        key, value = line.strip().split('=', 1)
                        values[key] = value.strip('"')
        except OSError:
            self.logger.debug("Fichier /etc/os-release absent")
        return values

    def _get_domain(self) -> Optional[str]:
        """
        Domaine du poste

        Sous Windows la variable USERDOMAIN reflète le domaine de la
        session ; ailleurs le domaine DNS du nom pleinement qualifié.
        """
        if sys.platform == "win32":
            return os.environ.get("USERDNSDOMAIN") or os.environ.get("USERDOMAIN")

        fqdn = socket.getfqdn()
        if '.' in fqdn:
            return fqdn.split('.', 1)[1]
        return None
