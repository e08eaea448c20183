"""
Réconciliation des instantanés envoyés par les postes

Chaque envoi décrit l'état complet d'une collection du poste (profils,
logiciels, licences, volumes...). Le serveur compare cet instantané à
ce qu'il connaît et applique ajouts, modifications et suppressions
dans une seule transaction par envoi.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Set

from sqlalchemy import delete, select

from ..core.database import upsert
from ..core.protocol import (
    BatteryReport,
    HardwareReport,
    License,
    OsReport,
    ProfileInfo,
    SoftwareEntry,
    Volume,
)
from .identity import IdentityCache, get_or_create_identity
from .models import (
    Battery,
    Disk,
    Hardware,
    NetworkAdapter,
    OsInfo,
    SoftwarePresence,
    UserProfile,
    UserProfilePath,
    VolumeStatus,
)
from .references import resolve_software_version, update_license_keys
from .registry import EndpointRegistry


PROFILE_COLUMNS = (
    'health_status',
    'roaming_configured',
    'roaming_path',
    'roaming_preference',
    'last_use_time',
    'last_download_time',
    'last_upload_time',
    'status',
    'size',
)


@dataclass
class MembershipDiff:
    """Résultat de la comparaison entre l'existant et l'instantané reçu"""
    to_add: Dict[Hashable, Any] = field(default_factory=dict)
    to_update: Dict[Hashable, Any] = field(default_factory=dict)
    to_delete: Set[Hashable] = field(default_factory=set)


def diff_membership(existing_keys: Iterable[Hashable], incoming: Dict[Hashable, Any]) -> MembershipDiff:
    """
    Compare les clés connues aux éléments reçus

    Le résultat ne dépend pas de l'ordre des éléments : une clé reçue et
    connue est à mettre à jour, reçue et inconnue à ajouter, connue et
    non reçue à supprimer.

    Args:
        existing_keys: Clés présentes en base
        incoming: Éléments reçus indexés par clé

    Returns:
        MembershipDiff: Ajouts, mises à jour et suppressions
    """
    existing = set(existing_keys)
    diff = MembershipDiff()
    for key, value in incoming.items():
        if key in existing:
            diff.to_update[key] = value
        else:
            diff.to_add[key] = value
    diff.to_delete = existing - set(incoming)
    return diff


class SnapshotReconciler:
    """
    Application des instantanés d'un poste sur l'inventaire central

    Une méthode par type d'envoi ; chacune ouvre sa propre transaction
    et verrouille la ligne du poste pour sérialiser deux envois
    concurrents du même poste.
    """

    def __init__(self, get_session, identity_cache: IdentityCache, logger):
        """
        Args:
            get_session: Fabrique de sessions transactionnelles
            identity_cache: Cache SID <-> identifiant partagé
            logger: Instance de InventoryLogger
        """
        self.get_session = get_session
        self.identity_cache = identity_cache
        self.logger = logger.get_logger()

    def update_profiles(self, endpoint_id: int, profiles: List[ProfileInfo]) -> Dict[str, int]:
        """
        Aligne les profils du poste sur l'instantané reçu

        Ordre d'application : suppressions, ajouts, mises à jour, puis
        occupation disque par chemin pour chaque profil conservé. Les
        chemins d'un profil supprimé disparaissent avec lui. Rejouer le
        même instantané ne modifie rien.

        Args:
            endpoint_id: Identifiant du poste
            profiles: Profils rapportés (un SID en double garde le dernier)

        Returns:
            dict: Nombre de profils ajoutés, modifiés et supprimés
        """
        incoming = {profile.sid: profile for profile in profiles}
        created_identities = []

        with self.get_session() as session:
            EndpointRegistry.lock_endpoint(session, endpoint_id)

            existing_rows = session.execute(
                select(UserProfile).where(UserProfile.endpoint_id == endpoint_id)
            ).scalars().all()

            existing_by_sid = {}
            for row in existing_rows:
                sid = self.identity_cache.resolve_reverse(session, row.identity_id)
                if sid is not None:
                    existing_by_sid[sid] = row

            diff = diff_membership(existing_by_sid.keys(), incoming)

            for sid in diff.to_delete:
                row = existing_by_sid[sid]
                session.execute(
                    delete(UserProfilePath).where(
                        UserProfilePath.endpoint_id == endpoint_id,
                        UserProfilePath.identity_id == row.identity_id,
                    )
                )
                session.delete(row)
            session.flush()

            surviving = {}
            for sid, profile in diff.to_add.items():
                identity_id, created = get_or_create_identity(
                    session, sid, profile.username, profile.domain
                )
                if created:
                    created_identities.append((sid, identity_id))
                else:
                    self.identity_cache.remember(sid, identity_id)
                row = UserProfile(endpoint_id=endpoint_id, identity_id=identity_id)
                self._apply_profile(row, profile)
                session.add(row)
                surviving[identity_id] = profile

            for sid, profile in diff.to_update.items():
                row = existing_by_sid[sid]
                get_or_create_identity(session, sid, profile.username, profile.domain)
                self._apply_profile(row, profile)
                surviving[row.identity_id] = profile
            session.flush()

            for identity_id, profile in surviving.items():
                self._update_paths(session, endpoint_id, identity_id, profile)

        # Les identités créées ne sont visibles des autres requêtes
        # qu'après le commit
        for sid, identity_id in created_identities:
            self.identity_cache.remember(sid, identity_id)

        stats = {
            'added': len(diff.to_add),
            'updated': len(diff.to_update),
            'deleted': len(diff.to_delete),
        }
        self.logger.debug(f"Profils du poste {endpoint_id}: {stats}")
        return stats

    @staticmethod
    def _apply_profile(row: UserProfile, profile: ProfileInfo):
        for column in PROFILE_COLUMNS:
            value = getattr(profile, column)
            if getattr(row, column) != value:
                setattr(row, column, value)

    @staticmethod
    def _update_paths(session, endpoint_id: int, identity_id: int, profile: ProfileInfo):
        sizes = {path_info.path: path_info.size for path_info in profile.path_size}
        for path, size in sizes.items():
            upsert(
                session,
                UserProfilePath,
                {'endpoint_id': endpoint_id, 'identity_id': identity_id, 'path': path, 'size': size},
                ['endpoint_id', 'identity_id', 'path'],
                ['size'],
            )

    def update_software(self, endpoint_id: int, entries: List[SoftwareEntry]) -> int:
        """
        Remplace la liste des logiciels installés du poste

        Chaque entrée est rattachée à sa version de référence (créée à
        la première apparition) ; les doublons sont fusionnés.

        Returns:
            int: Nombre de versions distinctes présentes
        """
        with self.get_session() as session:
            EndpointRegistry.lock_endpoint(session, endpoint_id)

            version_ids = set()
            for entry in entries:
                version_ids.add(
                    resolve_software_version(session, entry.name, entry.version, entry.publisher)
                )

            session.execute(
                delete(SoftwarePresence).where(SoftwarePresence.endpoint_id == endpoint_id)
            )
            session.add_all(
                SoftwarePresence(endpoint_id=endpoint_id, version_id=version_id)
                for version_id in sorted(version_ids)
            )

        self.logger.debug(f"Logiciels du poste {endpoint_id}: {len(version_ids)} version(s)")
        return len(version_ids)

    def update_licenses(self, endpoint_id: int, licenses: List[License]) -> Dict[str, int]:
        with self.get_session() as session:
            EndpointRegistry.lock_endpoint(session, endpoint_id)
            stats = update_license_keys(session, endpoint_id, licenses)
        self.logger.debug(f"Licences du poste {endpoint_id}: {stats}")
        return stats

    def update_os(self, endpoint_id: int, report: OsReport):
        with self.get_session() as session:
            upsert(
                session,
                OsInfo,
                {
                    'endpoint_id': endpoint_id,
                    'computer_name': report.computer_name,
                    'os': report.operating_system,
                    'os_version': report.os_version,
                    'domain': report.domain,
                },
                ['endpoint_id'],
                ['computer_name', 'os', 'os_version', 'domain'],
            )

    def update_hardware(self, endpoint_id: int, report: HardwareReport):
        """
        Met à jour le matériel du poste

        La ligne matériel est réécrite ; disques et cartes réseau sont
        remplacés en bloc.
        """
        values = {
            'manufacturer': report.manufacturer,
            'model_family': report.model_family,
            'serial_number': report.serial_number,
            'processor_name': report.processor_name,
            'processor_manufacturer': report.processor_manufacturer,
            'cores': report.cores,
            'logical_cores': report.logical_cores,
            'clock_speed': report.clock_speed,
            'memory_total': report.memory_total,
        }
        with self.get_session() as session:
            EndpointRegistry.lock_endpoint(session, endpoint_id)
            upsert(session, Hardware, dict(values, endpoint_id=endpoint_id), ['endpoint_id'], list(values))

            session.execute(delete(Disk).where(Disk.endpoint_id == endpoint_id))
            session.add_all(
                Disk(endpoint_id=endpoint_id, **disk.model_dump()) for disk in report.disks
            )

            session.execute(delete(NetworkAdapter).where(NetworkAdapter.endpoint_id == endpoint_id))
            session.add_all(
                NetworkAdapter(
                    endpoint_id=endpoint_id,
                    name=adapter.name,
                    mac_address=adapter.mac_address,
                    ip_addresses=adapter.ip_addresses,
                )
                for adapter in report.network
            )

    def update_volumes(self, endpoint_id: int, volumes: List[Volume]):
        with self.get_session() as session:
            EndpointRegistry.lock_endpoint(session, endpoint_id)
            session.execute(delete(VolumeStatus).where(VolumeStatus.endpoint_id == endpoint_id))
            session.add_all(
                VolumeStatus(endpoint_id=endpoint_id, **volume.model_dump()) for volume in volumes
            )

    def update_batteries(self, endpoint_id: int, batteries: List[BatteryReport]):
        with self.get_session() as session:
            EndpointRegistry.lock_endpoint(session, endpoint_id)
            session.execute(delete(Battery).where(Battery.endpoint_id == endpoint_id))
            session.add_all(
                Battery(
                    endpoint_id=endpoint_id,
                    battery_id=battery.id,
                    percent=battery.percent,
                    power_plugged=battery.power_plugged,
                    seconds_left=battery.seconds_left,
                )
                for battery in batteries
            )
