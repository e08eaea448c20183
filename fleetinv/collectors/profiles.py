"""
Collecteur des profils utilisateurs

Sous Windows, les profils sont lus dans la clé ProfileList du registre
et les comptes résolus avec pywin32. Sur les autres plateformes, chaque
compte humain possédant un dossier personnel est rapporté avec le SID
Unix "S-1-22-1-<uid>".
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from ..core.protocol import PathInfo, ProfileInfo
from .base import BaseCollector


PROFILE_LIST_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion\ProfileList"
DOMAIN_SID_PREFIX = "S-1-5-21-"
UNIX_SID_PREFIX = "S-1-22-1-"
ROAMING_SUBPATHS = ["AppData\\Roaming"]
FILETIME_EPOCH = datetime(1601, 1, 1)


def directory_size(path: str) -> int:
    """Taille cumulée des fichiers d'un dossier (les fichiers illisibles sont ignorés)"""
    total = 0
    for root, _dirs, files in os.walk(path, onerror=lambda error: None):
        for name in files:
            try:
                total += os.path.getsize(os.path.join(root, name))
            except OSError:
                continue
    return total


def filetime_to_datetime(high: Optional[int], low: Optional[int]) -> Optional[datetime]:
    """Convertit un FILETIME Windows (intervalles de 100 ns depuis 1601) en date UTC"""
    if not high and not low:
        return None
    value = ((high or 0) << 32) | (low or 0)
    return FILETIME_EPOCH + timedelta(microseconds=value // 10)


class ProfileCollector(BaseCollector):
    """
    Collecteur des profils utilisateurs du poste

    La taille d'un profil chargé (session ouverte) n'est pas calculée :
    les fichiers verrouillés fausseraient le résultat.
    """

    def collect(self) -> List[ProfileInfo]:
        self._start_collection()

        if sys.platform == "win32":
            profiles = self._safe_execute(self._collect_windows_profiles, "Erreur lecture des profils", [])
        else:
            profiles = self._safe_execute(self._collect_unix_profiles, "Erreur lecture des comptes", [])

        self.logger.info(f"Collecté {len(profiles)} profil(s) utilisateur")
        self._end_collection()
        return profiles

    def _collect_windows_profiles(self) -> List[ProfileInfo]:
        import winreg

        profiles = []
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, PROFILE_LIST_KEY) as profile_list:
            for index in range(winreg.QueryInfoKey(profile_list)[0]):
                sid = winreg.EnumKey(profile_list, index)
                if not sid.startswith(DOMAIN_SID_PREFIX):
                    continue
                with winreg.OpenKey(profile_list, sid) as key:
                    profiles.append(self._read_windows_profile(winreg, key, sid))
        return profiles

    def _read_windows_profile(self, winreg, key, sid: str) -> ProfileInfo:
        def value(name):
            try:
                return winreg.QueryValueEx(key, name)[0]
            except FileNotFoundError:
                return None

        local_path = os.path.expandvars(value("ProfileImagePath") or "")
        roaming_path = value("CentralProfile") or None
        username, domain = self._lookup_account(sid)
        loaded = self._is_loaded(winreg, sid)

        size = None
        path_size = []
        if local_path and not loaded:
            size = directory_size(local_path)
            path_size = [
                PathInfo(path=os.path.join(local_path, sub_path), size=directory_size(os.path.join(local_path, sub_path)))
                for sub_path in ROAMING_SUBPATHS
            ]

        return ProfileInfo(
            sid=sid,
            username=username,
            domain=domain,
            health_status=0,
            roaming_configured=bool(roaming_path),
            roaming_path=roaming_path,
            roaming_preference=None,
            last_use_time=filetime_to_datetime(value("LocalProfileLoadTimeHigh"), value("LocalProfileLoadTimeLow")),
            status=int(value("State") or 0),
            size=size,
            path_size=path_size,
        )

    def _lookup_account(self, sid: str) -> Tuple[Optional[str], Optional[str]]:
        import pywintypes
        import win32security

        try:
            name, domain, _account_type = win32security.LookupAccountSid(
                None, win32security.ConvertStringSidToSid(sid)
            )
        except pywintypes.error as e:
            # Compte supprimé ou contrôleur de domaine injoignable
            self.logger.debug(f"Compte introuvable pour {sid}: {e}")
            return None, None
        return name, domain

    @staticmethod
    def _is_loaded(winreg, sid: str) -> bool:
        try:
            winreg.OpenKey(winreg.HKEY_USERS, sid).Close()
            return True
        except OSError:
            return False

    def _collect_unix_profiles(self) -> List[ProfileInfo]:
        import pwd

        profiles = []
        for entry in pwd.getpwall():
            if entry.pw_uid < 1000 or entry.pw_uid == 65534:
                continue
            if not os.path.isdir(entry.pw_dir):
                continue

            try:
                mtime = os.stat(entry.pw_dir).st_mtime
                last_use = datetime.fromtimestamp(mtime, timezone.utc).replace(tzinfo=None)
            except OSError:
                last_use = None

            profiles.append(ProfileInfo(
                sid=f"{UNIX_SID_PREFIX}{entry.pw_uid}",
                username=entry.pw_name,
                last_use_time=last_use,
                size=directory_size(entry.pw_dir),
            ))
        return profiles
