"""
Classe de base pour tous les collecteurs de l'agent d'inventaire

Ce module définit l'interface commune que tous les collecteurs
doivent implémenter, ainsi que des utilitaires partagés.
"""

import re
import time
import subprocess
from abc import ABC, abstractmethod
from typing import Any, List, Optional


class BaseCollector(ABC):
    """
    Classe de base abstraite pour tous les collecteurs

    Un collecteur lit une facette du poste et retourne les types du
    protocole prêts à être envoyés. Il ne lève pas d'exception : une
    lecture impossible est journalisée et la valeur par défaut retournée.
    """

    def __init__(self, config, logger):
        """
        Initialise le collecteur de base

        Args:
            config: Instance de AgentConfig
            logger: Logger (logging.Logger) de l'agent
        """
        self.config = config
        self.logger = logger

        # Métadonnées du collecteur
        self.collector_name = self.__class__.__name__
        self.collection_start_time = None
        self.collection_errors: List[str] = []
        self.last_collection_duration = 0.0

    @abstractmethod
    def collect(self) -> Any:
        """
        Méthode principale de collecte - doit être implémentée par chaque collecteur
        """

    def _start_collection(self):
        self.collection_start_time = time.time()
        self.collection_errors = []
        self.logger.debug(f"Début collecte {self.collector_name}")

    def _end_collection(self) -> float:
        """
        Termine une session de collecte

        Returns:
            float: Durée de collecte en secondes
        """
        if not self.collection_start_time:
            return 0.0

        duration = time.time() - self.collection_start_time
        self.logger.debug(f"Collecte {self.collector_name} terminée en {duration:.2f}s")
        if self.collection_errors:
            self.logger.warning(f"Collecte {self.collector_name} avec {len(self.collection_errors)} erreur(s)")
        self.last_collection_duration = duration
        return duration

    def _safe_execute(self, func, error_message: str = "Erreur lors de l'exécution", default_value=None):
        """
        Exécute une fonction de manière sécurisée avec gestion d'erreur

        Args:
            func: Fonction à exécuter
            error_message: Message d'erreur personnalisé
            default_value: Valeur par défaut en cas d'erreur

        Returns:
            Résultat de la fonction ou default_value
        """
        try:
            return func()
        except Exception as e:
            error_details = f"{error_message}: {str(e)}"
            self.collection_errors.append(error_details)
            self.logger.warning(error_details)
            return default_value

    def _clean_string(self, value: Any) -> str:
        """
        Supprime les caractères de contrôle et les espaces multiples
        """
        if not value:
            return ""
        value = ''.join(char for char in str(value).strip() if char.isprintable())
        return re.sub(r'\s+', ' ', value)

    def _execute_command(self, command: List[str]) -> Optional[str]:
        """
        Exécute une commande système et retourne sa sortie

        Args:
            command: Commande et arguments

        Returns:
            str: Sortie de la commande ou None en cas d'erreur
        """
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=30
            )
        except FileNotFoundError:
            self.logger.debug(f"Commande introuvable: {command[0]}")
            return None
        except subprocess.TimeoutExpired:
            self.logger.warning(f"Timeout pour la commande: {' '.join(command)}")
            return None

        if result.returncode != 0:
            self.logger.warning(f"Commande échouée: {' '.join(command)} (code: {result.returncode})")
            return None
        return result.stdout.strip()

    def get_collection_stats(self):
        return {
            'collector_name': self.collector_name,
            'collection_duration': self.last_collection_duration,
            'errors_count': len(self.collection_errors),
            'errors': self.collection_errors.copy()
        }
