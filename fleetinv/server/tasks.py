"""
Cycle de vie des tâches distantes côté serveur

Une tâche est créée par un opérateur, téléchargée puis exécutée par le
poste, qui en rapporte l'état. Les transitions ne reculent jamais :

    Created < Downloaded < Running < {Successful, Failed}

Un état final est définitif ; un rapport identique à l'état courant est
ignoré sans erreur.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..core.protocol import Task, TaskStatus, TaskUpdate, format_datetime
from .models import ClientTask


DELETE_USER_PROFILE = "delete-user-profile"


class TaskNotFound(LookupError):
    """Aucune tâche de ce numéro pour ce poste"""

    def __init__(self, endpoint_id: int, task_id: int):
        super().__init__(f"Tâche {task_id} introuvable pour le poste {endpoint_id}")
        self.endpoint_id = endpoint_id
        self.task_id = task_id


class InvalidTaskTransition(ValueError):
    """Transition d'état refusée (retour en arrière ou tâche terminée)"""

    def __init__(self, task_id: int, current: TaskStatus, requested: TaskStatus):
        super().__init__(
            f"Transition refusée pour la tâche {task_id}: {current.value} -> {requested.value}"
        )
        self.task_id = task_id
        self.current = current
        self.requested = requested


class TaskManager:
    """
    Gestion des tâches distantes

    Toutes les mises à jour sont limitées au couple (poste, tâche) : un
    poste ne peut pas modifier la tâche d'un autre.
    """

    def __init__(self, get_session, logger):
        """
        Args:
            get_session: Fabrique de sessions transactionnelles
            logger: Instance de InventoryLogger
        """
        self.get_session = get_session
        self.logger = logger.get_logger()

    def create_task(self, endpoint_id: int, name: str, parameters: Optional[Dict[str, Any]] = None,
                    time_start: Optional[datetime] = None) -> int:
        """
        Crée une tâche à l'état Created

        Args:
            endpoint_id: Poste destinataire
            name: Nom de l'opération
            parameters: Paramètres de l'opération
            time_start: Heure avant laquelle le poste ne doit pas l'exécuter

        Returns:
            int: Numéro de la tâche
        """
        payload = {'name': name, 'parameters': parameters or {}}
        with self.get_session() as session:
            row = ClientTask(
                endpoint_id=endpoint_id,
                task=payload,
                time_start=time_start,
                task_status=TaskStatus.CREATED.value,
            )
            session.add(row)
            session.flush()
            task_id = row.id

        self.logger.info(f"Tâche {task_id} ({name}) créée pour le poste {endpoint_id}")
        return task_id

    def delete_user_profile(self, endpoint_id: int, sid: str,
                            time_start: Optional[datetime] = None) -> int:
        """Planifie la suppression d'un profil utilisateur sur le poste"""
        return self.create_task(endpoint_id, DELETE_USER_PROFILE, {'sid': sid}, time_start)

    def fetch_pending(self, endpoint_id: int) -> List[Task]:
        """
        Tâches à l'état Created du poste, sans changer leur état

        Le passage à Downloaded n'a lieu que sur rapport du poste.
        """
        with self.get_session() as session:
            rows = session.execute(
                select(ClientTask)
                .where(
                    ClientTask.endpoint_id == endpoint_id,
                    ClientTask.task_status == TaskStatus.CREATED.value,
                )
                .order_by(ClientTask.id)
            ).scalars().all()
            return [Task(id=row.id, task=row.task, time_start=row.time_start) for row in rows]

    def update_status(self, endpoint_id: int, update: TaskUpdate) -> TaskStatus:
        """
        Applique un rapport d'état envoyé par le poste

        Args:
            endpoint_id: Poste émetteur
            update: Rapport reçu

        Returns:
            TaskStatus: État de la tâche après application

        Raises:
            TaskNotFound: Si la tâche n'appartient pas au poste
            InvalidTaskTransition: Si le rapport ferait reculer la tâche
        """
        with self.get_session() as session:
            row = session.execute(
                select(ClientTask)
                .where(ClientTask.endpoint_id == endpoint_id, ClientTask.id == update.id)
                .with_for_update()
            ).scalar_one_or_none()
            if row is None:
                raise TaskNotFound(endpoint_id, update.id)

            current = row.status
            requested = update.task_status

            if requested == current:
                self.logger.debug(f"Tâche {update.id}: état {current.value} déjà enregistré")
                return current

            if current.is_terminal or requested.rank <= current.rank:
                raise InvalidTaskTransition(update.id, current, requested)

            row.task_status = requested.value
            if update.time_downloaded is not None and row.time_download is None:
                row.time_download = update.time_downloaded
            if requested.is_terminal:
                row.task_result = update.task_result

        self.logger.info(f"Tâche {update.id} du poste {endpoint_id}: {current.value} -> {requested.value}")
        return requested

    def list_tasks(self, endpoint_id: int) -> List[Dict[str, Any]]:
        """Toutes les tâches du poste, de la plus récente à la plus ancienne"""
        with self.get_session() as session:
            rows = session.execute(
                select(ClientTask)
                .where(ClientTask.endpoint_id == endpoint_id)
                .order_by(ClientTask.id.desc())
            ).scalars().all()
            return [self._describe(row) for row in rows]

    @staticmethod
    def _describe(row: ClientTask) -> Dict[str, Any]:
        return {
            'id': row.id,
            'task': row.task,
            'created_at': format_datetime(row.created_at),
            'time_start': format_datetime(row.time_start),
            'time_download': format_datetime(row.time_download),
            'task_status': row.task_status,
            'task_result': row.task_result,
        }
