"""
Types échangés entre l'agent et le serveur

Ce module décrit les charges JSON de l'API sous forme de modèles pydantic :
- Enregistrement du poste
- Profils utilisateurs, logiciels, licences
- Tâches distantes et rapports d'état
On lit une charge avec `Model.model_validate(data)` (erreur :
`pydantic.ValidationError`) et on l'écrit avec
`model.model_dump(mode="json")`.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    StrictBool,
    StrictInt,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)


class ProtocolError(ValueError):
    """Charge JSON mal formée"""


class TaskStatus(Enum):
    """États d'une tâche distante"""
    CREATED = "Created"
    DOWNLOADED = "Downloaded"
    RUNNING = "Running"
    SUCCESSFUL = "Successful"
    FAILED = "Failed"

    @property
    def rank(self) -> int:
        """Position dans le cycle de vie (les deux états finaux partagent le même rang)"""
        return _STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESSFUL, TaskStatus.FAILED)

    @classmethod
    def parse(cls, value: Any) -> 'TaskStatus':
        if isinstance(value, cls):
            return value
        for status in cls:
            if isinstance(value, str) and status.value.lower() == value.lower():
                return status
        raise ProtocolError(f"Statut de tâche inconnu: {value!r}")


_STATUS_RANK = {
    TaskStatus.CREATED: 0,
    TaskStatus.DOWNLOADED: 1,
    TaskStatus.RUNNING: 2,
    TaskStatus.SUCCESSFUL: 3,
    TaskStatus.FAILED: 3,
}


def utcnow() -> datetime:
    """Heure courante UTC sans fuseau (format stocké en base)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Écrit une date UTC naïve au format ISO 8601 avec suffixe Z"""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat() + 'Z'


def parse_uuid(value: Any) -> str:
    """
    Valide un UUID et le normalise

    Raises:
        ProtocolError: Si la valeur n'est pas un UUID
    """
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        raise ProtocolError(f"UUID invalide: {value!r}")


def describe_validation_error(error: ValidationError) -> str:
    """Résumé d'une erreur de validation sur une ligne (champ: raison)"""
    details = []
    for item in error.errors():
        location = '.'.join(str(part) for part in item['loc']) or 'corps'
        details.append(f"{location}: {item['msg']}")
    return "; ".join(details)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _none_to_empty(value: Any) -> Any:
    return '' if value is None else value


# Date ISO 8601 ramenée en UTC naïve, réécrite avec le suffixe Z
UtcDateTime = Annotated[
    datetime,
    AfterValidator(_to_naive_utc),
    PlainSerializer(format_datetime, when_used='json'),
]
OptionalDateTime = Annotated[Optional[UtcDateTime], BeforeValidator(_blank_to_none)]

EndpointUuid = Annotated[str, AfterValidator(parse_uuid)]


class Register(BaseModel):
    name: str
    uuid: Annotated[Optional[EndpointUuid], BeforeValidator(_blank_to_none)] = None


class PathInfo(BaseModel):
    path: str
    size: StrictInt


class ProfileInfo(BaseModel):
    """Profil utilisateur tel que rapporté par un poste"""
    sid: str
    username: Optional[str] = None
    domain: Optional[str] = None
    health_status: StrictInt = 0
    roaming_configured: StrictBool = False
    roaming_path: Optional[str] = None
    roaming_preference: Optional[StrictBool] = None
    last_use_time: OptionalDateTime = None
    last_download_time: OptionalDateTime = None
    last_upload_time: OptionalDateTime = None
    status: StrictInt = 0
    size: Optional[StrictInt] = None
    path_size: List[PathInfo] = Field(default_factory=list)

    @field_validator('sid')
    @classmethod
    def sid_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("sid vide")
        return value

    @field_validator('health_status', 'status', mode='before')
    @classmethod
    def null_as_zero(cls, value):
        return 0 if value is None else value

    @field_validator('roaming_configured', mode='before')
    @classmethod
    def null_as_false(cls, value):
        return False if value is None else value

    @field_validator('path_size', mode='before')
    @classmethod
    def null_as_empty(cls, value):
        return [] if value is None else value


class ProfilesPush(BaseModel):
    profiles: List[ProfileInfo]


class SoftwareEntry(BaseModel):
    name: str
    version: Annotated[str, BeforeValidator(_none_to_empty)] = ''
    publisher: Optional[str] = None


class SoftwarePush(BaseModel):
    software: List[SoftwareEntry]


class License(BaseModel):
    name: str
    key: str


class LicensesPush(BaseModel):
    licenses: List[License]


class Task(BaseModel):
    """Tâche distante : opération nommée et sac de paramètres"""
    id: StrictInt
    task: Dict[str, Any]
    time_start: OptionalDateTime = None

    @property
    def name(self) -> str:
        name = self.task.get('name')
        return name if isinstance(name, str) else ''

    @property
    def parameters(self) -> Dict[str, Any]:
        parameters = self.task.get('parameters')
        return parameters if isinstance(parameters, dict) else {}


class TaskBundle(BaseModel):
    tasks: List[Task]


class TaskRequest(BaseModel):
    """Demande de création de tâche par un opérateur"""
    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    time_start: OptionalDateTime = None

    @field_validator('name')
    @classmethod
    def strip_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("nom de tâche vide")
        return value.strip()

    @field_validator('parameters', mode='before')
    @classmethod
    def null_parameters(cls, value):
        return {} if value is None else value


class TaskUpdate(BaseModel):
    """Rapport d'état d'une tâche envoyé par l'agent"""
    id: StrictInt
    task_status: Annotated[TaskStatus, BeforeValidator(TaskStatus.parse)]
    time_downloaded: OptionalDateTime = None
    task_result: Optional[Dict[str, Any]] = None


class OsReport(BaseModel):
    """Système d'exploitation et nom du poste"""
    operating_system: str
    os_version: Annotated[str, BeforeValidator(_none_to_empty)] = ''
    computer_name: str
    domain: Optional[str] = None


class DiskDrive(BaseModel):
    model: Optional[str] = None
    serial_number: Optional[str] = None
    size: Optional[StrictInt] = None
    device_id: Optional[str] = None
    media_type: Optional[str] = None


class NetworkAdapterInfo(BaseModel):
    name: str
    mac_address: Optional[str] = None
    ip_addresses: List[str] = Field(default_factory=list)


_MODEL_FIELDS = ('manufacturer', 'model_family', 'serial_number')
_PROCESSOR_FIELDS = {
    'name': 'processor_name',
    'manufacturer': 'processor_manufacturer',
    'cores': 'cores',
    'logical_cores': 'logical_cores',
    'clock_speed': 'clock_speed',
}


class HardwareReport(BaseModel):
    """
    Matériel du poste : modèle, processeur, mémoire, disques, réseau

    Sur le fil, le modèle et le processeur sont des objets imbriqués
    ('model', 'processor') ; en mémoire les champs sont à plat.
    """
    model_config = ConfigDict(protected_namespaces=())

    manufacturer: Optional[str] = None
    model_family: Optional[str] = None
    serial_number: Optional[str] = None
    processor_name: Optional[str] = None
    processor_manufacturer: Optional[str] = None
    cores: Optional[StrictInt] = None
    logical_cores: Optional[StrictInt] = None
    clock_speed: Optional[StrictInt] = None
    memory_total: Optional[StrictInt] = None
    disks: List[DiskDrive] = Field(default_factory=list)
    network: List[NetworkAdapterInfo] = Field(default_factory=list)

    @model_validator(mode='before')
    @classmethod
    def flatten_sections(cls, data):
        if not isinstance(data, dict) or ('model' not in data and 'processor' not in data):
            return data
        model = data.get('model') or {}
        processor = data.get('processor') or {}
        if not isinstance(model, dict) or not isinstance(processor, dict):
            raise ValueError("'model' et 'processor' doivent être des objets")

        flat = {key: value for key, value in data.items() if key not in ('model', 'processor')}
        for key in _MODEL_FIELDS:
            flat[key] = model.get(key)
        for wire_key, key in _PROCESSOR_FIELDS.items():
            flat[key] = processor.get(wire_key)
        return flat

    @model_serializer(mode='wrap')
    def nest_sections(self, handler):
        data = handler(self)
        nested = {
            'model': {key: data.pop(key, None) for key in _MODEL_FIELDS},
            'processor': {wire_key: data.pop(key, None) for wire_key, key in _PROCESSOR_FIELDS.items()},
        }
        nested.update(data)
        return nested


class Volume(BaseModel):
    drive_letter: str
    capacity: StrictInt
    free_space: StrictInt
    label: Optional[str] = None
    file_system: Optional[str] = None


class VolumesPush(BaseModel):
    volumes: List[Volume]


class BatteryReport(BaseModel):
    id: str
    percent: Optional[StrictInt] = None
    power_plugged: Optional[StrictBool] = None
    seconds_left: Optional[StrictInt] = None


class BatteriesPush(BaseModel):
    batteries: List[BatteryReport]
