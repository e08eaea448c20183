"""
Collecteur des clés de licence

Lit la clé produit Windows encodée dans la valeur DigitalProductId
du registre.
"""

import sys
from typing import List

from ..core.protocol import License
from .base import BaseCollector


CURRENT_VERSION_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion"
KEY_CHARS = "BCDFGHJKMPQRTVWXY2346789"
KEY_OFFSET = 52


def decode_product_key(digital_product_id: bytes) -> str:
    """
    Décode une clé produit Windows (format Windows 8 et suivants)

    Args:
        digital_product_id: Valeur brute DigitalProductId

    Returns:
        str: Clé au format XXXXX-XXXXX-XXXXX-XXXXX-XXXXX
    """
    if len(digital_product_id) < KEY_OFFSET + 15:
        raise ValueError("DigitalProductId trop court")

    key = bytearray(digital_product_id)
    is_win8 = ((key[66] + 5) // 6) & 1
    key[66] = (key[66] & 0xF7) | ((is_win8 & 2) * 4)

    decoded = ""
    last = 0
    for _ in range(25):
        current = 0
        for index in range(14, -1, -1):
            current = current * 256 + key[index + KEY_OFFSET]
            key[index + KEY_OFFSET] = current // 24
            current %= 24
        decoded = KEY_CHARS[current] + decoded
        last = current

    # Le caractère N est inséré à la position du dernier reste
    rest = decoded[1:]
    decoded = rest[:last] + "N" + rest[last:]

    return "-".join(decoded[i:i + 5] for i in range(0, 25, 5))


class LicenseCollector(BaseCollector):
    """
    Collecteur des licences installées
    """

    def collect(self) -> List[License]:
        self._start_collection()

        licenses = []
        if sys.platform == "win32":
            windows_license = self._safe_execute(self._get_windows_license, "Erreur lecture clé Windows")
            if windows_license:
                licenses.append(windows_license)

        self._end_collection()
        return licenses

    def _get_windows_license(self) -> License:
        import winreg

        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, CURRENT_VERSION_KEY) as key:
            name = winreg.QueryValueEx(key, "ProductName")[0]
            digital_product_id = winreg.QueryValueEx(key, "DigitalProductId")[0]

        return License(name=name, key=decode_product_key(bytes(digital_product_id)))
