"""
Journalisation de l'agent et du serveur d'inventaire

Un logger nommé par processus ('FleetInventoryAgent' ou
'FleetInventoryServer'), écrit dans un fichier à rotation et sur la
console. Les composants reçoivent l'instance de InventoryLogger et
appellent `get_logger()`.
"""

import os
import sys
import logging
import logging.handlers

from .. import __version__


AGENT_LOGGER_NAME = 'FleetInventoryAgent'
SERVER_LOGGER_NAME = 'FleetInventoryServer'

# Clés de configuration dont la valeur n'est jamais journalisée en clair
SECRET_KEYS = ('auth_token', 'api_token')


class InventoryLogger:
    """
    Logger nommé configuré depuis la section [logging]

    Un même nom de logger n'est configuré qu'une fois par processus.
    """

    def __init__(self, config, name: str = AGENT_LOGGER_NAME):
        """
        Args:
            config: Instance de AgentConfig ou ServerConfig
            name: Nom du logger
        """
        self.config = config
        self.logger = logging.getLogger(name)

        if not self.logger.handlers:
            self._setup_logging()

    def _setup_logging(self):
        logging_config = self.config.get_logging_config()
        log_level = getattr(logging, logging_config['log_level'].upper(), logging.INFO)
        log_file = logging_config['log_file']
        self.logger.setLevel(log_level)

        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=logging_config['max_log_size'],
                backupCount=logging_config['backup_count'],
                encoding='utf-8'
            )
            file_handler.setFormatter(logging.Formatter(
                fmt='%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            self.logger.addHandler(file_handler)

        except OSError as e:
            # Sans fichier de log, la console reste disponible
            print(f"Journal fichier indisponible ({log_file}): {e}")

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(fmt='%(levelname)s - %(message)s'))
        self.logger.addHandler(console_handler)

        self.logger.debug(f"Journalisation {logging_config['log_level']} vers {log_file}")

    def get_logger(self) -> logging.Logger:
        return self.logger

    def log_startup(self, config):
        """
        Journalise la version, la plateforme et la configuration au démarrage

        Les jetons d'authentification sont masqués.

        Args:
            config: Instance de AgentConfig ou ServerConfig
        """
        self.logger.info(f"Fleet Inventory {__version__} sur {sys.platform} (Python {sys.version.split()[0]})")

        sections = {'server': config.get_server_config()}
        if hasattr(config, 'get_agent_config'):
            sections['agent'] = config.get_agent_config()

        for section, values in sections.items():
            for key, value in values.items():
                if key in SECRET_KEYS:
                    value = "configuré" if value else "non configuré"
                self.logger.info(f"{section}.{key}: {value}")

        if hasattr(config, 'get_uuid'):
            self.logger.info(f"UUID du poste: {config.get_uuid() or 'non enregistré'}")
