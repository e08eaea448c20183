"""
Exécution des tâches distantes sur le poste

Ce module gère :
- La récupération des tâches auprès du serveur et leur mise en file locale
- L'exécution de chaque tâche dans son propre thread
- Le rapport d'état au serveur (un seul état final par tâche)
"""

import sys
import json
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..core.protocol import Task, TaskStatus, TaskUpdate, utcnow


DELETE_USER_PROFILE = "delete-user-profile"

TaskHandler = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


class TaskError(Exception):
    """Échec d'une opération demandée par une tâche"""


def delete_user_profile(parameters: Dict[str, Any]) -> Dict[str, Any]:
    """
    Supprime un profil utilisateur Windows

    Args:
        parameters: Doit contenir 'sid'

    Returns:
        dict: SID du profil supprimé
    """
    if sys.platform != "win32":
        raise TaskError("Suppression de profil disponible uniquement sous Windows")

    import win32profile

    sid = parameters['sid']
    win32profile.DeleteProfile(sid)
    return {'sid': sid}


class TaskExecutor:
    """
    Cycle de vie des tâches côté agent

    Les opérations sont recherchées par nom sans tenir compte de la
    casse. Une opération inconnue, un paramètre manquant ou une erreur
    d'exécution donnent l'état Failed avec un message dans le résultat.
    """

    def __init__(self, store, sender, logger):
        """
        Args:
            store: Instance de LocalTaskStore
            sender: Instance de InventorySender
            logger: Instance de InventoryLogger
        """
        self.store = store
        self.sender = sender
        self.logger = logger.get_logger()

        self._handlers: Dict[str, Tuple[TaskHandler, Tuple[str, ...]]] = {}
        self._threads: List[threading.Thread] = []
        self._threads_lock = threading.Lock()

        self.register_handler(DELETE_USER_PROFILE, delete_user_profile, required=('sid',))

    def register_handler(self, name: str, handler: TaskHandler, required: Iterable[str] = ()):
        """
        Associe une opération à son nom

        Args:
            name: Nom de l'opération (insensible à la casse)
            handler: Fonction recevant les paramètres, retournant le résultat
            required: Paramètres obligatoires
        """
        self._handlers[name.lower()] = (handler, tuple(required))

    def fetch_tasks(self) -> int:
        """
        Télécharge les tâches en attente et les met en file locale

        Chaque nouvelle tâche est rapportée Downloaded. Une tâche déjà
        connue (rapport précédent perdu) est rapportée dans son état local.

        Returns:
            int: Nombre de nouvelles tâches
        """
        success, tasks = self.sender.get_tasks()
        if not success:
            self.logger.warning(f"Récupération des tâches impossible: {tasks}")
            return 0

        new_tasks = 0
        for task in tasks:
            if self.store.add_new_task(task):
                new_tasks += 1
                self.logger.info(f"Tâche {task.id} ({task.name}) téléchargée")
                self._report(TaskUpdate(
                    id=task.id,
                    task_status=TaskStatus.DOWNLOADED,
                    time_downloaded=utcnow(),
                ))
            else:
                self._report_local_state(task.id)

        if tasks:
            self.logger.info(f"{len(tasks)} tâche(s) reçue(s), {new_tasks} nouvelle(s)")
        return new_tasks

    def _report_local_state(self, task_id: int):
        local = self.store.get_task(task_id)
        if local is None:
            return
        status = TaskStatus(local.status)
        self.logger.debug(f"Tâche {task_id} déjà connue, état local {status.value} renvoyé")
        self._report(TaskUpdate(
            id=task_id,
            task_status=status,
            time_downloaded=local.time_download,
            task_result=json.loads(local.result) if status.is_terminal and local.result else None,
        ))

    def run_pending(self) -> List[threading.Thread]:
        """
        Lance chaque tâche prête dans un thread dédié

        Une tâche n'est lancée que si ce passage a réussi à la marquer
        Running ; elle ne peut donc pas être exécutée deux fois.

        Returns:
            list: Threads démarrés
        """
        started = []
        for task in self.store.get_pending_tasks():
            if not self.store.mark_running(task.id):
                continue

            thread = threading.Thread(
                target=self._run_task,
                args=(task,),
                daemon=False,
                name=f"Task-{task.id}"
            )
            thread.start()
            started.append(thread)

        if started:
            with self._threads_lock:
                self._threads = [t for t in self._threads if t.is_alive()] + started
            self.logger.info(f"{len(started)} tâche(s) démarrée(s)")
        return started

    def _run_task(self, task: Task):
        try:
            self.logger.info(f"Exécution de la tâche {task.id} ({task.name})")
            self._report(TaskUpdate(id=task.id, task_status=TaskStatus.RUNNING))

            status, result = self.execute(task)

            self.store.mark_finished(task.id, status, result)
            self._report(TaskUpdate(id=task.id, task_status=status, task_result=result))

            if status == TaskStatus.SUCCESSFUL:
                self.logger.info(f"Tâche {task.id} terminée avec succès")
            else:
                self.logger.warning(f"Tâche {task.id} en échec: {result.get('error')}")

        except Exception:
            self.logger.exception(f"Erreur inattendue pendant la tâche {task.id}")

    def execute(self, task: Task) -> Tuple[TaskStatus, Optional[Dict[str, Any]]]:
        """
        Exécute l'opération demandée par la tâche

        Seul un échec porte un résultat (le message d'erreur) ; ce que
        retourne l'opération en cas de succès est seulement journalisé.

        Args:
            task: Tâche à exécuter

        Returns:
            Tuple[TaskStatus, dict]: (Successful et None, ou Failed et {'error': ...})
        """
        entry = self._handlers.get(task.name.lower())
        if entry is None:
            return TaskStatus.FAILED, {'error': f"unknown task: {task.name}"}

        handler, required = entry
        parameters = task.parameters
        missing = [name for name in required if parameters.get(name) in (None, '')]
        if missing:
            return TaskStatus.FAILED, {'error': f"missing parameters: {', '.join(missing)}"}

        try:
            result = handler(parameters)
        except Exception as e:
            self.logger.error(f"Tâche {task.id} ({task.name}): {e}")
            return TaskStatus.FAILED, {'error': str(e)}

        if result:
            self.logger.debug(f"Tâche {task.id} ({task.name}): {result}")
        return TaskStatus.SUCCESSFUL, None

    def _report(self, update: TaskUpdate):
        success, message = self.sender.update_task(update)
        if not success:
            self.logger.warning(f"Rapport de la tâche {update.id} non transmis: {message}")

    def wait(self, timeout: Optional[float] = None):
        """Attend la fin des tâches en cours (utilisé à l'arrêt et en mode debug)"""
        with self._threads_lock:
            threads = list(self._threads)
        for thread in threads:
            thread.join(timeout)
