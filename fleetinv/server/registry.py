"""
Registre des postes

Associe l'UUID durable d'un poste à son identifiant relationnel ; tous
les autres composants du serveur s'appuient sur cet identifiant.
"""

import uuid as uuid_module
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.database import insert_ignore, upsert
from ..core.protocol import Register, parse_uuid
from .models import Endpoint, OsInfo


class EndpointNotFound(LookupError):
    """Aucun poste enregistré pour cet UUID"""

    def __init__(self, endpoint_uuid: str):
        super().__init__(f"Poste inconnu: {endpoint_uuid}")
        self.endpoint_uuid = endpoint_uuid


class EndpointRegistry:
    """
    Enregistrement et résolution des postes

    L'enregistrement est idempotent : renvoyer le même UUID avec un
    autre nom met à jour le nom sans créer de nouveau poste.
    """

    def __init__(self, get_session, logger):
        """
        Args:
            get_session: Fabrique de sessions transactionnelles
            logger: Instance de InventoryLogger
        """
        self.get_session = get_session
        self.logger = logger.get_logger()

    def register(self, registration: Register) -> Tuple[Endpoint, Register]:
        """
        Crée ou retrouve le poste et met à jour son nom

        Args:
            registration: Nom et UUID éventuel envoyés par l'agent

        Returns:
            tuple: (poste, réponse d'enregistrement avec l'UUID définitif)
        """
        endpoint_uuid = registration.uuid or str(uuid_module.uuid4())

        with self.get_session() as session:
            insert_ignore(session, Endpoint, {'uuid': endpoint_uuid}, ['uuid'])
            endpoint = session.execute(
                select(Endpoint).where(Endpoint.uuid == endpoint_uuid)
            ).scalar_one()
            upsert(
                session,
                OsInfo,
                {'endpoint_id': endpoint.id, 'computer_name': registration.name},
                ['endpoint_id'],
                ['computer_name'],
            )

        if registration.uuid:
            self.logger.debug(f"Poste {endpoint_uuid} ré-enregistré sous le nom {registration.name}")
        else:
            self.logger.info(f"Nouveau poste enregistré: {registration.name} ({endpoint_uuid})")

        return endpoint, Register(name=registration.name, uuid=endpoint_uuid)

    def get_endpoint(self, endpoint_uuid: str, session: Optional[Session] = None) -> Endpoint:
        """
        Résout un UUID en poste

        Args:
            endpoint_uuid: UUID du poste
            session: Session existante (sinon une session courte est ouverte)

        Raises:
            ProtocolError: Si l'UUID est mal formé
            EndpointNotFound: Si le poste n'est pas enregistré
        """
        endpoint_uuid = parse_uuid(endpoint_uuid)
        if session is not None:
            return self._load(session, endpoint_uuid)
        with self.get_session() as own_session:
            return self._load(own_session, endpoint_uuid)

    @staticmethod
    def _load(session: Session, endpoint_uuid: str) -> Endpoint:
        endpoint = session.execute(
            select(Endpoint).where(Endpoint.uuid == endpoint_uuid)
        ).scalar_one_or_none()
        if endpoint is None:
            raise EndpointNotFound(endpoint_uuid)
        return endpoint

    @staticmethod
    def lock_endpoint(session: Session, endpoint_id: int):
        """
        Verrouille la ligne du poste pour la durée de la transaction

        Deux réconciliations concurrentes du même poste sont ainsi
        sérialisées par la base. Sur SQLite, FOR UPDATE est ignoré : le
        verrou d'écriture est déjà pris par BEGIN IMMEDIATE (voir
        core.database.make_engine).
        """
        session.execute(
            select(Endpoint.id).where(Endpoint.id == endpoint_id).with_for_update()
        )

    def list_endpoints(self) -> List[dict]:
        """
        Liste les postes avec leur nom et système

        Returns:
            list: Postes triés par nom
        """
        with self.get_session() as session:
            rows = session.execute(
                select(Endpoint, OsInfo)
                .outerjoin(OsInfo, OsInfo.endpoint_id == Endpoint.id)
                .order_by(OsInfo.computer_name)
            ).all()
            return [self._describe(endpoint, os_info) for endpoint, os_info in rows]

    def describe(self, endpoint_uuid: str) -> dict:
        with self.get_session() as session:
            endpoint = self.get_endpoint(endpoint_uuid, session)
            os_info = session.get(OsInfo, endpoint.id)
            return self._describe(endpoint, os_info)

    @staticmethod
    def _describe(endpoint: Endpoint, os_info: Optional[OsInfo]) -> dict:
        return {
            'uuid': endpoint.uuid,
            'name': os_info.computer_name if os_info else None,
            'os': os_info.os if os_info else None,
            'os_version': os_info.os_version if os_info else None,
            'domain': os_info.domain if os_info else None,
        }
