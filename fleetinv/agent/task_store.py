"""
File locale des tâches distantes de l'agent

Les tâches téléchargées sont conservées dans une base SQLite locale
pour survivre à un redémarrage de l'agent. Chaque opération est une
transaction courte ; plusieurs threads d'exécution partagent le moteur.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Integer, String, Text, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import AgentBase, make_engine, make_session_factory
from ..core.protocol import Task, TaskStatus, utcnow


class LocalTask(AgentBase):
    __tablename__ = "client_task"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    task: Mapped[str] = mapped_column(Text, nullable=False)
    time_start: Mapped[Optional[datetime]] = mapped_column(DateTime)
    time_download: Mapped[Optional[datetime]] = mapped_column(DateTime)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    result: Mapped[Optional[str]] = mapped_column(Text)

    def to_task(self) -> Task:
        return Task(id=self.id, task=json.loads(self.task), time_start=self.time_start)


class LocalTaskStore:
    """
    Stockage des tâches reçues par l'agent

    L'identifiant local est celui attribué par le serveur : recevoir deux
    fois la même tâche ne crée pas de doublon.
    """

    def __init__(self, database_path: str, logger):
        """
        Args:
            database_path: Chemin du fichier SQLite
            logger: Instance de InventoryLogger
        """
        self.logger = logger.get_logger()
        self.engine = make_engine(f"sqlite:///{database_path}")
        AgentBase.metadata.create_all(self.engine)
        self.get_session = make_session_factory(self.engine)
        self.logger.debug(f"File locale des tâches: {database_path}")

    def add_new_task(self, task: Task) -> bool:
        """
        Enregistre une tâche téléchargée à l'état Downloaded

        Args:
            task: Tâche reçue du serveur

        Returns:
            bool: True si la tâche est nouvelle, False si elle était déjà connue
        """
        try:
            with self.get_session() as session:
                session.add(LocalTask(
                    id=task.id,
                    task=json.dumps(task.task),
                    time_start=task.time_start,
                    time_download=utcnow(),
                    status=TaskStatus.DOWNLOADED.value,
                ))
        except IntegrityError:
            return False
        return True

    def get_task(self, task_id: int) -> Optional[LocalTask]:
        with self.get_session() as session:
            return session.get(LocalTask, task_id)

    def get_pending_tasks(self, now: Optional[datetime] = None) -> List[Task]:
        """
        Tâches téléchargées dont l'heure de départ est absente ou passée

        Args:
            now: Heure de référence UTC (par défaut l'heure courante)
        """
        now = now or utcnow()
        with self.get_session() as session:
            rows = session.execute(
                select(LocalTask)
                .where(
                    LocalTask.status == TaskStatus.DOWNLOADED.value,
                    or_(LocalTask.time_start.is_(None), LocalTask.time_start <= now),
                )
                .order_by(LocalTask.id)
            ).scalars().all()
            return [row.to_task() for row in rows]

    def mark_running(self, task_id: int) -> bool:
        """
        Passe la tâche de Downloaded à Running de façon atomique

        Returns:
            bool: True si ce thread a obtenu la tâche
        """
        with self.get_session() as session:
            result = session.execute(
                update(LocalTask)
                .where(LocalTask.id == task_id, LocalTask.status == TaskStatus.DOWNLOADED.value)
                .values(status=TaskStatus.RUNNING.value)
            )
            return result.rowcount == 1

    def mark_finished(self, task_id: int, status: TaskStatus, result: Optional[Dict[str, Any]] = None):
        if not status.is_terminal:
            raise ValueError(f"État final attendu, reçu {status.value}")
        with self.get_session() as session:
            session.execute(
                update(LocalTask)
                .where(LocalTask.id == task_id)
                .values(status=status.value, result=json.dumps(result) if result is not None else None)
            )

    def close(self):
        self.engine.dispose()
