"""
Module de configuration pour l'agent et le serveur d'inventaire

Ce module gère la configuration des deux processus, incluant :
- Lecture des fichiers de configuration
- Validation des paramètres
- Valeurs par défaut
- Persistance de l'identifiant durable de l'agent (UUID)
"""

import os
import sys
import uuid
import configparser
from typing import Dict, Any, Optional


DATABASE_URL_ENV = "FLEETINV_DATABASE_URL"

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class BaseConfig:
    """
    Gestionnaire de configuration commun

    Les sous-classes définissent leurs sections par défaut dans
    `_set_defaults` et leur chemin de fichier par défaut.
    """

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialise la configuration

        Args:
            config_file: Chemin vers le fichier de configuration (optionnel)
        """
        self.config = configparser.ConfigParser()
        self.config_file = config_file or self._get_default_config_path()

        # Définir les valeurs par défaut
        self._set_defaults()

        # Charger la configuration depuis le fichier
        self._load_config()

    def _get_default_config_path(self) -> str:
        raise NotImplementedError

    def _set_defaults(self):
        raise NotImplementedError

    def _get_default_data_dir(self) -> str:
        """
        Détermine le dossier de données par défaut selon la plateforme

        Returns:
            str: Chemin du dossier de données
        """
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMDATA", "C:\\ProgramData"),
                "FleetInventory"
            )
        return "/var/lib/fleet-inventory"

    def _get_default_log_path(self, filename: str) -> str:
        """
        Détermine le chemin par défaut des logs selon la plateforme

        Args:
            filename: Nom du fichier de log

        Returns:
            str: Chemin vers le fichier de log
        """
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMDATA", "C:\\ProgramData"),
                "FleetInventory",
                "logs",
                filename
            )
        return os.path.join("/var/log/fleet-inventory", filename)

    def _set_logging_defaults(self, filename: str):
        self.config.add_section('logging')
        self.config.set('logging', 'log_level', 'INFO')
        self.config.set('logging', 'log_file', self._get_default_log_path(filename))
        self.config.set('logging', 'max_log_size', '10485760')  # 10MB
        self.config.set('logging', 'backup_count', '5')

    def _load_config(self):
        """
        Charge la configuration depuis le fichier

        Si le fichier n'existe pas, utilise les valeurs par défaut.
        En cas d'erreur de lecture, continue avec les défauts.
        """
        try:
            if os.path.exists(self.config_file):
                self.config.read(self.config_file, encoding='utf-8')
                print(f"Configuration chargée depuis: {self.config_file}")
            else:
                print(f"Fichier de configuration non trouvé: {self.config_file}")
                print("Utilisation des valeurs par défaut")

        except configparser.Error as e:
            print(f"Erreur lors du chargement de la configuration: {e}")
            print("Utilisation des valeurs par défaut")

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        """
        Récupère une valeur de configuration

        Args:
            section: Nom de la section
            option: Nom de l'option
            fallback: Valeur par défaut si non trouvée

        Returns:
            str: Valeur de configuration
        """
        return self.config.get(section, option, fallback=fallback)

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        """Récupère une valeur booléenne de configuration"""
        return self.config.getboolean(section, option, fallback=fallback)

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        """Récupère une valeur entière de configuration"""
        return self.config.getint(section, option, fallback=fallback)

    def set(self, section: str, option: str, value: str):
        """
        Définit une valeur de configuration

        Args:
            section: Nom de la section
            option: Nom de l'option
            value: Nouvelle valeur
        """
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, option, str(value))

    def save(self):
        """
        Sauvegarde la configuration dans le fichier

        Crée les dossiers parents si nécessaire.

        Raises:
            OSError: Si le fichier ne peut pas être écrit
        """
        config_dir = os.path.dirname(self.config_file)
        if config_dir and not os.path.exists(config_dir):
            os.makedirs(config_dir, exist_ok=True)

        with open(self.config_file, 'w', encoding='utf-8') as f:
            self.config.write(f)

    def get_logging_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration du logging

        Returns:
            dict: Configuration logging
        """
        return {
            'log_level': self.get('logging', 'log_level', 'INFO'),
            'log_file': self.get('logging', 'log_file'),
            'max_log_size': self.getint('logging', 'max_log_size', 10485760),
            'backup_count': self.getint('logging', 'backup_count', 5)
        }

    def _validate_logging(self, errors: list):
        log_level = self.get('logging', 'log_level', 'INFO')
        if log_level.upper() not in LOG_LEVELS:
            errors.append("Niveau de log invalide")


class AgentConfig(BaseConfig):
    """
    Configuration de l'agent d'inventaire

    Regroupe les paramètres serveur, les cadences du planificateur,
    la base locale des tâches et l'UUID durable du poste.
    """

    def _get_default_config_path(self) -> str:
        """
        Détermine le chemin par défaut du fichier de configuration selon la plateforme

        Returns:
            str: Chemin vers le fichier de configuration
        """
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMFILES", "C:\\Program Files"),
                "Fleet Inventory Agent",
                "config",
                "agent.conf"
            )
        return "/etc/fleet-inventory/agent.conf"

    def _set_defaults(self):
        """
        Définit les valeurs de configuration par défaut

        Les cadences sont exprimées en secondes ; les décalages en secondes
        dans la minute évitent que deux travaux partent au même instant.
        """
        # Configuration serveur
        self.config.add_section('server')
        self.config.set('server', 'url', 'http://127.0.0.1:8000/api/v1')
        self.config.set('server', 'auth_token', '')
        self.config.set('server', 'timeout', '30')
        self.config.set('server', 'verify_ssl', 'true')

        # Configuration agent
        self.config.add_section('agent')
        self.config.set('agent', 'base_interval', '60')
        self.config.set('agent', 'base_offset', '0')
        self.config.set('agent', 'rich_interval', '300')
        self.config.set('agent', 'rich_offset', '40')
        self.config.set('agent', 'task_fetch_interval', '60')
        self.config.set('agent', 'task_fetch_offset', '20')
        self.config.set('agent', 'task_run_interval', '60')
        self.config.set('agent', 'task_run_offset', '10')
        self.config.set('agent', 'collect_software', 'true')
        self.config.set('agent', 'collect_hardware', 'true')
        self.config.set('agent', 'collect_profiles', 'true')
        self.config.set('agent', 'collect_licenses', 'true')

        # Identité durable du poste (attribuée par le serveur)
        self.config.add_section('client_info')
        self.config.set('client_info', 'uuid', '')

        # Base locale des tâches
        self.config.add_section('database')
        self.config.set(
            'database', 'path',
            os.path.join(self._get_default_data_dir(), 'agent_tasks.db')
        )

        self._set_logging_defaults('agent.log')

    def get_server_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration complète du serveur

        Returns:
            dict: Configuration serveur
        """
        return {
            'url': self.get('server', 'url').rstrip('/'),
            'auth_token': self.get('server', 'auth_token', ''),
            'timeout': self.getint('server', 'timeout', 30),
            'verify_ssl': self.getboolean('server', 'verify_ssl', True)
        }

    def get_agent_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration complète de l'agent

        Returns:
            dict: Configuration agent
        """
        return {
            'base_interval': self.getint('agent', 'base_interval', 60),
            'base_offset': self.getint('agent', 'base_offset', 0),
            'rich_interval': self.getint('agent', 'rich_interval', 300),
            'rich_offset': self.getint('agent', 'rich_offset', 40),
            'task_fetch_interval': self.getint('agent', 'task_fetch_interval', 60),
            'task_fetch_offset': self.getint('agent', 'task_fetch_offset', 20),
            'task_run_interval': self.getint('agent', 'task_run_interval', 60),
            'task_run_offset': self.getint('agent', 'task_run_offset', 10),
            'collect_software': self.getboolean('agent', 'collect_software', True),
            'collect_hardware': self.getboolean('agent', 'collect_hardware', True),
            'collect_profiles': self.getboolean('agent', 'collect_profiles', True),
            'collect_licenses': self.getboolean('agent', 'collect_licenses', True)
        }

    def get_database_path(self) -> str:
        return self.get('database', 'path')

    def get_uuid(self) -> Optional[str]:
        """
        Récupère l'UUID durable du poste

        Returns:
            str: UUID enregistré, ou None si le poste n'est pas encore enregistré
        """
        value = self.get('client_info', 'uuid', '')
        if not value:
            return None
        try:
            return str(uuid.UUID(value))
        except ValueError:
            print(f"UUID invalide dans la configuration: {value}")
            return None

    def set_uuid(self, value: str):
        """
        Enregistre l'UUID attribué par le serveur et le persiste sur disque

        Args:
            value: UUID du poste
        """
        self.set('client_info', 'uuid', str(uuid.UUID(value)))
        self.save()

    def validate(self) -> bool:
        """
        Valide la configuration courante

        Returns:
            bool: True si la configuration est valide, False sinon
        """
        errors = []

        server_url = self.get('server', 'url')
        if not server_url or not server_url.startswith(('http://', 'https://')):
            errors.append("URL serveur invalide")

        agent_config = self.get_agent_config()
        for key in ('base_interval', 'rich_interval', 'task_fetch_interval', 'task_run_interval'):
            if agent_config[key] <= 0:
                errors.append(f"Cadence invalide pour {key} (doit être > 0)")
        for key in ('base_offset', 'rich_offset', 'task_fetch_offset', 'task_run_offset'):
            if not (0 <= agent_config[key] <= 59):
                errors.append(f"Décalage invalide pour {key} (doit être entre 0 et 59)")

        self._validate_logging(errors)

        if errors:
            for error in errors:
                print(f"Erreur de configuration: {error}")
            return False

        return True


class ServerConfig(BaseConfig):
    """
    Configuration du serveur d'inventaire

    Regroupe l'adresse d'écoute, le jeton d'API optionnel et l'URL
    de la base relationnelle.
    """

    def _get_default_config_path(self) -> str:
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMFILES", "C:\\Program Files"),
                "Fleet Inventory Server",
                "config",
                "server.conf"
            )
        return "/etc/fleet-inventory/server.conf"

    def _set_defaults(self):
        self.config.add_section('server')
        self.config.set('server', 'host', '0.0.0.0')
        self.config.set('server', 'port', '8000')
        self.config.set('server', 'api_token', '')

        self.config.add_section('database')
        self.config.set(
            'database', 'url',
            'sqlite:///' + os.path.join(self._get_default_data_dir(), 'inventory.db')
        )

        self._set_logging_defaults('server.log')

    def get_server_config(self) -> Dict[str, Any]:
        return {
            'host': self.get('server', 'host', '0.0.0.0'),
            'port': self.getint('server', 'port', 8000),
            'api_token': self.get('server', 'api_token', '')
        }

    def get_database_url(self) -> str:
        """
        Récupère l'URL de la base de données

        La variable d'environnement FLEETINV_DATABASE_URL est prioritaire
        sur le fichier de configuration.

        Returns:
            str: URL SQLAlchemy
        """
        return os.environ.get(DATABASE_URL_ENV) or self.get('database', 'url')

    def validate(self) -> bool:
        errors = []

        port = self.getint('server', 'port', 8000)
        if not (1 <= port <= 65535):
            errors.append("Port serveur invalide (doit être entre 1 et 65535)")

        database_url = self.get_database_url()
        if not database_url or '://' not in database_url:
            errors.append("URL de base de données invalide")

        self._validate_logging(errors)

        if errors:
            for error in errors:
                print(f"Erreur de configuration: {error}")
            return False

        return True


def create_default_config(config_path: str, kind: str = 'agent') -> BaseConfig:
    """
    Crée un fichier de configuration par défaut

    Args:
        config_path: Chemin où créer le fichier de configuration
        kind: 'agent' ou 'server'

    Returns:
        BaseConfig: Instance de configuration créée
    """
    config_class = ServerConfig if kind == 'server' else AgentConfig
    config = config_class(config_path)
    config.save()
    return config
