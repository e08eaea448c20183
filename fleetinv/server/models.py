"""
Tables de l'inventaire central

Le serveur est seul propriétaire de cet état. Les tables de référence
(logiciels, versions, identités) sont partagées entre postes et ne sont
jamais supprimées ici ; les tables par poste sont réconciliées à chaque
envoi.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import ServerBase
from ..core.protocol import TaskStatus, utcnow


class Endpoint(ServerBase):
    __tablename__ = "endpoint"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)


class OsInfo(ServerBase):
    __tablename__ = "os_info"

    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), primary_key=True
    )
    computer_name: Mapped[str] = mapped_column(Text, nullable=False)
    os: Mapped[Optional[str]] = mapped_column(Text)
    os_version: Mapped[Optional[str]] = mapped_column(Text)
    domain: Mapped[Optional[str]] = mapped_column(Text)


class Identity(ServerBase):
    """Compte utilisateur identifié par son SID"""
    __tablename__ = "identity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sid: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(Text)
    domain: Mapped[Optional[str]] = mapped_column(Text)


class UserProfile(ServerBase):
    __tablename__ = "user_profile"

    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), primary_key=True
    )
    identity_id: Mapped[int] = mapped_column(ForeignKey("identity.id"), primary_key=True)
    health_status: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    roaming_configured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    roaming_path: Mapped[Optional[str]] = mapped_column(Text)
    roaming_preference: Mapped[Optional[bool]] = mapped_column(Boolean)
    last_use_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_download_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_upload_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    size: Mapped[Optional[int]] = mapped_column(BigInteger)


class UserProfilePath(ServerBase):
    __tablename__ = "user_profile_path"
    __table_args__ = (
        UniqueConstraint("endpoint_id", "identity_id", "path"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False
    )
    identity_id: Mapped[int] = mapped_column(ForeignKey("identity.id"), nullable=False)
    path: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)


class Software(ServerBase):
    __tablename__ = "software"
    __table_args__ = (
        UniqueConstraint("name", "publisher"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    publisher: Mapped[str] = mapped_column(Text, nullable=False, default="")


class SoftwareVersion(ServerBase):
    __tablename__ = "software_version"
    __table_args__ = (
        UniqueConstraint("software_id", "version"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    software_id: Mapped[int] = mapped_column(ForeignKey("software.id"), nullable=False)
    version: Mapped[str] = mapped_column(Text, nullable=False)


class SoftwarePresence(ServerBase):
    __tablename__ = "software_presence"

    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), primary_key=True
    )
    version_id: Mapped[int] = mapped_column(ForeignKey("software_version.id"), primary_key=True)


class LicenseKey(ServerBase):
    __tablename__ = "license_key"
    __table_args__ = (
        UniqueConstraint("endpoint_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    key: Mapped[str] = mapped_column(Text, nullable=False)


class Hardware(ServerBase):
    __tablename__ = "hardware"

    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), primary_key=True
    )
    manufacturer: Mapped[Optional[str]] = mapped_column(Text)
    model_family: Mapped[Optional[str]] = mapped_column(Text)
    serial_number: Mapped[Optional[str]] = mapped_column(Text)
    processor_name: Mapped[Optional[str]] = mapped_column(Text)
    processor_manufacturer: Mapped[Optional[str]] = mapped_column(Text)
    cores: Mapped[Optional[int]] = mapped_column(Integer)
    logical_cores: Mapped[Optional[int]] = mapped_column(Integer)
    clock_speed: Mapped[Optional[int]] = mapped_column(Integer)
    memory_total: Mapped[Optional[int]] = mapped_column(BigInteger)


class Disk(ServerBase):
    __tablename__ = "disk"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False
    )
    model: Mapped[Optional[str]] = mapped_column(Text)
    serial_number: Mapped[Optional[str]] = mapped_column(Text)
    size: Mapped[Optional[int]] = mapped_column(BigInteger)
    device_id: Mapped[Optional[str]] = mapped_column(Text)
    media_type: Mapped[Optional[str]] = mapped_column(Text)


class NetworkAdapter(ServerBase):
    __tablename__ = "network_adapter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    mac_address: Mapped[Optional[str]] = mapped_column(Text)
    ip_addresses: Mapped[Optional[Any]] = mapped_column(JSON)


class VolumeStatus(ServerBase):
    __tablename__ = "volume_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False
    )
    drive_letter: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(Text)
    file_system: Mapped[Optional[str]] = mapped_column(Text)
    capacity: Mapped[int] = mapped_column(BigInteger, nullable=False)
    free_space: Mapped[int] = mapped_column(BigInteger, nullable=False)


class Battery(ServerBase):
    __tablename__ = "battery"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False
    )
    battery_id: Mapped[str] = mapped_column(Text, nullable=False)
    percent: Mapped[Optional[int]] = mapped_column(Integer)
    power_plugged: Mapped[Optional[bool]] = mapped_column(Boolean)
    seconds_left: Mapped[Optional[int]] = mapped_column(BigInteger)


class ClientTask(ServerBase):
    """Tâche distante destinée à un poste"""
    __tablename__ = "client_task"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    endpoint_id: Mapped[int] = mapped_column(
        ForeignKey("endpoint.id", ondelete="CASCADE"), nullable=False, index=True
    )
    task: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    time_start: Mapped[Optional[datetime]] = mapped_column(DateTime)
    time_download: Mapped[Optional[datetime]] = mapped_column(DateTime)
    task_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=TaskStatus.CREATED.value
    )
    task_result: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON)

    @property
    def status(self) -> TaskStatus:
        return TaskStatus(self.task_status)
