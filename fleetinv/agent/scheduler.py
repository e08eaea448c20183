"""
Module de planification pour l'agent d'inventaire

Ce module gère :
- Les quatre travaux périodiques de l'agent (faits de base, faits
  détaillés, récupération des tâches, exécution des tâches)
- Leur décalage dans la minute pour ne pas partir au même instant
- La boucle de planification en arrière-plan et son arrêt
"""

import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import schedule


JOB_NAMES = ('base', 'rich', 'task_fetch', 'task_run')


class InventoryScheduler:
    """
    Gestionnaire de planification pour l'agent d'inventaire

    Cette classe utilise le module 'schedule' : chaque travail est une
    fonction sans argument. Un travail qui échoue est journalisé et ne
    bloque ni les autres travaux ni la boucle.
    """

    def __init__(self, config, logger, jobs: Dict[str, Callable[[], Any]]):
        """
        Initialise le scheduler

        Args:
            config: Instance de AgentConfig
            logger: Instance de InventoryLogger
            jobs: Fonctions à planifier, indexées par 'base', 'rich',
                'task_fetch' et 'task_run'
        """
        self.config = config
        self.logger = logger.get_logger()
        self.jobs = jobs

        # État du scheduler
        self.is_running = False
        self.scheduler_thread = None
        self.stop_event = threading.Event()

        # Planificateur propre à cette instance (pas l'instance globale du module)
        self.scheduler = schedule.Scheduler()
        self.last_runs: Dict[str, Optional[datetime]] = {name: None for name in JOB_NAMES}

        self._setup_schedule()

        self.logger.info("InventoryScheduler initialisé")

    def _setup_schedule(self):
        """
        Configure la planification basée sur la configuration
        """
        agent_config = self.config.get_agent_config()
        self.scheduler.clear()

        for name in JOB_NAMES:
            if name not in self.jobs:
                continue
            interval = agent_config[f'{name}_interval']
            offset = agent_config[f'{name}_offset']
            job = self._make_job(name)

            if interval % 60 == 0:
                # Cadence en minutes, départ à la seconde `offset`
                self.scheduler.every(interval // 60).minutes.at(f":{offset:02d}").do(job).tag(name)
                self.logger.info(f"Planification {name}: toutes les {interval // 60} min à :{offset:02d}")
            else:
                self.scheduler.every(interval).seconds.do(job).tag(name)
                self.logger.info(f"Planification {name}: toutes les {interval} s")

    def _make_job(self, name: str) -> Callable[[], None]:
        def run():
            self.logger.debug(f"Travail planifié déclenché: {name}")
            try:
                self.jobs[name]()
                self.last_runs[name] = datetime.now()
            except Exception:
                self.logger.exception(f"Erreur lors du travail planifié {name}")
        return run

    def start(self):
        """
        Démarre le scheduler dans un thread séparé
        """
        if self.is_running:
            self.logger.warning("Le scheduler est déjà en cours d'exécution")
            return

        self.logger.info("Démarrage du scheduler")
        self.stop_event.clear()
        self.is_running = True

        self.scheduler_thread = threading.Thread(
            target=self._run_scheduler,
            name="InventoryScheduler",
            daemon=True
        )
        self.scheduler_thread.start()

        self.logger.info("Scheduler démarré avec succès")

    def stop(self):
        """
        Arrête le scheduler

        Les threads de tâches déjà lancés ne sont pas interrompus.
        """
        if not self.is_running:
            return

        self.logger.info("Arrêt du scheduler...")
        self.stop_event.set()
        self.is_running = False

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=5)

        self.scheduler.clear()
        self.logger.info("Scheduler arrêté")

    def _run_scheduler(self):
        """
        Boucle principale : un passage par seconde jusqu'à l'arrêt
        """
        self.logger.debug("Boucle du scheduler démarrée")

        while not self.stop_event.is_set():
            try:
                self.scheduler.run_pending()
            except Exception:
                self.logger.exception("Erreur dans la boucle du scheduler")
            self.stop_event.wait(1)

        self.logger.debug("Boucle du scheduler terminée")

    def force_run(self, name: str):
        """
        Exécute immédiatement un travail, hors planification

        Args:
            name: Nom du travail
        """
        if name not in self.jobs:
            raise KeyError(f"Travail inconnu: {name}")
        self.logger.info(f"Exécution forcée du travail {name}")
        self._make_job(name)()

    def get_status(self) -> Dict[str, Any]:
        """
        Retourne le statut du scheduler

        Returns:
            dict: Statut et prochaines exécutions
        """
        next_runs = {}
        for job in self.scheduler.get_jobs():
            for tag in job.tags:
                next_runs[tag] = job.next_run.isoformat() if job.next_run else None

        return {
            'is_running': self.is_running,
            'next_runs': next_runs,
            'last_runs': {
                name: value.isoformat() if value else None
                for name, value in self.last_runs.items()
            },
        }
