"""
Lectures de l'inventaire pour l'API opérateur
"""

from typing import Any, Dict, List

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..core.protocol import format_datetime
from .models import (
    Battery,
    Disk,
    Hardware,
    Identity,
    LicenseKey,
    NetworkAdapter,
    Software,
    SoftwarePresence,
    SoftwareVersion,
    UserProfile,
    UserProfilePath,
    VolumeStatus,
)


def list_profiles(session: Session, endpoint_id: int) -> List[Dict[str, Any]]:
    rows = session.execute(
        select(UserProfile, Identity)
        .join(Identity, Identity.id == UserProfile.identity_id)
        .where(UserProfile.endpoint_id == endpoint_id)
        .order_by(Identity.username)
    ).all()
    return [
        {
            'sid': identity.sid,
            'username': identity.username,
            'domain': identity.domain,
            'health_status': profile.health_status,
            'roaming_configured': profile.roaming_configured,
            'roaming_path': profile.roaming_path,
            'roaming_preference': profile.roaming_preference,
            'last_use_time': format_datetime(profile.last_use_time),
            'last_download_time': format_datetime(profile.last_download_time),
            'last_upload_time': format_datetime(profile.last_upload_time),
            'status': profile.status,
            'size': profile.size,
        }
        for profile, identity in rows
    ]


def list_profile_paths(session: Session, endpoint_id: int, sid: str) -> List[Dict[str, Any]]:
    rows = session.execute(
        select(UserProfilePath)
        .join(Identity, Identity.id == UserProfilePath.identity_id)
        .where(UserProfilePath.endpoint_id == endpoint_id, Identity.sid == sid)
        .order_by(UserProfilePath.path)
    ).scalars().all()
    return [{'path': row.path, 'size': row.size} for row in rows]


def list_endpoint_software(session: Session, endpoint_id: int) -> List[Dict[str, Any]]:
    rows = session.execute(
        select(Software.name, Software.publisher, SoftwareVersion.version)
        .join(SoftwareVersion, SoftwareVersion.software_id == Software.id)
        .join(SoftwarePresence, SoftwarePresence.version_id == SoftwareVersion.id)
        .where(SoftwarePresence.endpoint_id == endpoint_id)
        .order_by(Software.name, SoftwareVersion.version)
    ).all()
    return [
        {'name': name, 'publisher': publisher or None, 'version': version}
        for name, publisher, version in rows
    ]


def software_catalog(session: Session) -> List[Dict[str, Any]]:
    """Logiciels connus avec le nombre de postes qui les ont installés"""
    rows = session.execute(
        select(
            Software.name,
            Software.publisher,
            SoftwareVersion.version,
            func.count(SoftwarePresence.endpoint_id),
        )
        .join(SoftwareVersion, SoftwareVersion.software_id == Software.id)
        .outerjoin(SoftwarePresence, SoftwarePresence.version_id == SoftwareVersion.id)
        .group_by(Software.name, Software.publisher, SoftwareVersion.version)
        .order_by(Software.name, SoftwareVersion.version)
    ).all()
    return [
        {'name': name, 'publisher': publisher or None, 'version': version, 'installations': count}
        for name, publisher, version, count in rows
    ]


def list_licenses(session: Session, endpoint_id: int) -> List[Dict[str, Any]]:
    rows = session.execute(
        select(LicenseKey).where(LicenseKey.endpoint_id == endpoint_id).order_by(LicenseKey.name)
    ).scalars().all()
    return [{'name': row.name, 'key': row.key} for row in rows]


def describe_hardware(session: Session, endpoint_id: int) -> Dict[str, Any]:
    hardware = session.get(Hardware, endpoint_id)
    disks = session.execute(select(Disk).where(Disk.endpoint_id == endpoint_id)).scalars().all()
    adapters = session.execute(
        select(NetworkAdapter).where(NetworkAdapter.endpoint_id == endpoint_id)
    ).scalars().all()
    return {
        'manufacturer': hardware.manufacturer if hardware else None,
        'model_family': hardware.model_family if hardware else None,
        'serial_number': hardware.serial_number if hardware else None,
        'processor_name': hardware.processor_name if hardware else None,
        'cores': hardware.cores if hardware else None,
        'logical_cores': hardware.logical_cores if hardware else None,
        'memory_total': hardware.memory_total if hardware else None,
        'disks': [
            {'model': d.model, 'serial_number': d.serial_number, 'size': d.size,
             'device_id': d.device_id, 'media_type': d.media_type}
            for d in disks
        ],
        'network': [
            {'name': a.name, 'mac_address': a.mac_address, 'ip_addresses': a.ip_addresses or []}
            for a in adapters
        ],
    }


def describe_status(session: Session, endpoint_id: int) -> Dict[str, Any]:
    volumes = session.execute(
        select(VolumeStatus).where(VolumeStatus.endpoint_id == endpoint_id)
        .order_by(VolumeStatus.drive_letter)
    ).scalars().all()
    batteries = session.execute(
        select(Battery).where(Battery.endpoint_id == endpoint_id)
    ).scalars().all()
    return {
        'volumes': [
            {'drive_letter': v.drive_letter, 'label': v.label, 'file_system': v.file_system,
             'capacity': v.capacity, 'free_space': v.free_space}
            for v in volumes
        ],
        'batteries': [
            {'id': b.battery_id, 'percent': b.percent, 'power_plugged': b.power_plugged,
             'seconds_left': b.seconds_left}
            for b in batteries
        ],
    }
