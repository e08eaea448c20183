"""
Point d'entrée principal de l'agent Fleet Inventory

Ce module orchestre tous les composants de l'agent et peut être exécuté
de différentes manières selon les besoins :
- En mode service (planificateur permanent)
- En mode mise à jour unique (faits de base et/ou détaillés)
- En mode collecte locale sans envoi
- En mode debug (une seule collecte ou opération)
"""

import sys
import json
import signal
import argparse
import threading

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from .agent.collector import InventoryCollector
from .agent.executor import DELETE_USER_PROFILE, TaskExecutor
from .agent.scheduler import InventoryScheduler
from .agent.sender import InventorySender
from .agent.task_store import LocalTaskStore
from .core.config import AgentConfig, create_default_config
from .core.logger import InventoryLogger
from .core.protocol import Task


def to_json(value):
    """Convertit les types du protocole en structures sérialisables"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode='json')
    if isinstance(value, dict):
        return {key: to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json(item) for item in value]
    return value


class FleetInventoryAgent:
    """
    Agent d'inventaire principal

    Cette classe relie collecteurs, communication serveur, file locale
    des tâches et planificateur.
    """

    def __init__(self, config_path=None):
        """
        Initialise l'agent d'inventaire

        Args:
            config_path: Chemin vers le fichier de configuration
        """
        # Configuration
        self.config = AgentConfig(config_path)

        # Logger
        self.logger = InventoryLogger(self.config)
        self.app_logger = self.logger.get_logger()

        # Composants principaux
        self.collector = InventoryCollector(self.config, self.logger)
        self.sender = InventorySender(self.config, self.logger)
        # File locale des tâches ouverte au premier besoin (voir _open_task_store)
        self.task_store = None
        self.executor = None
        self.scheduler = None

        # État de l'agent
        self.running = False
        self.shutdown_event = threading.Event()

        self.app_logger.info("Agent Fleet Inventory initialisé")

    def update_base_info(self) -> bool:
        """
        Enregistre le poste et envoie les informations système

        Returns:
            bool: True si l'envoi a abouti
        """
        os_report = self.collector.collect_base()

        success, message = self.sender.register(os_report.computer_name)
        if not success:
            self.app_logger.error(f"Enregistrement impossible: {message}")
            return False

        success, message = self.sender.push_os(os_report)
        return success

    def update_rich_info(self) -> bool:
        """
        Collecte et envoie les faits détaillés

        Chaque envoi est indépendant : l'échec de l'un n'empêche pas les
        suivants.

        Returns:
            bool: True si tous les envois ont abouti
        """
        if not self.config.get_uuid():
            self.app_logger.info("Poste non enregistré, enregistrement préalable")
            if not self.update_base_info():
                return False

        inventory = self.collector.collect_rich()
        pushes = [
            ('hardware', self.sender.push_hardware),
            ('profiles', self.sender.push_profiles),
            ('software', self.sender.push_software),
            ('volumes', self.sender.push_volumes),
            ('licenses', self.sender.push_licenses),
            ('batteries', self.sender.push_battery),
        ]

        all_ok = True
        for key, push in pushes:
            if key not in inventory:
                continue
            success, message = push(inventory[key])
            if not success:
                self.app_logger.warning(f"Envoi {key} échoué: {message}")
                all_ok = False
        return all_ok

    def _open_task_store(self) -> bool:
        """
        Ouvre la file locale des tâches si ce n'est pas déjà fait

        Une file inaccessible (dossier non inscriptible, fichier verrouillé)
        ne fait échouer que le cycle en cours ; l'ouverture est retentée au
        cycle suivant et les envois d'inventaire continuent.

        Returns:
            bool: True si la file est disponible
        """
        if self.executor is not None:
            return True

        database_path = self.config.get_database_path()
        try:
            self.task_store = LocalTaskStore(database_path, self.logger)
        except (SQLAlchemyError, OSError) as e:
            self.app_logger.error(f"File locale des tâches indisponible ({database_path}), cycle ignoré: {e}")
            return False

        self.executor = TaskExecutor(self.task_store, self.sender, self.logger)
        return True

    def update_task_info(self) -> bool:
        if not self._open_task_store():
            return False
        self.executor.fetch_tasks()
        return True

    def run_tasks(self) -> bool:
        if not self._open_task_store():
            return False
        self.executor.run_pending()
        return True

    def start_scheduler(self):
        """
        Démarre le planificateur des quatre travaux périodiques
        """
        if self.scheduler:
            self.app_logger.warning("Le planificateur est déjà démarré")
            return

        self.app_logger.info("Démarrage du planificateur d'inventaire")
        self.scheduler = InventoryScheduler(
            self.config,
            self.logger,
            {
                'base': self.update_base_info,
                'rich': self.update_rich_info,
                'task_fetch': self.update_task_info,
                'task_run': self.run_tasks,
            }
        )
        self.scheduler.start()

    def stop_scheduler(self):
        if self.scheduler:
            self.app_logger.info("Arrêt du planificateur")
            self.scheduler.stop()
            self.scheduler = None

    def run_service_mode(self):
        """
        Lance l'agent en mode service

        Le planificateur tourne jusqu'à SIGTERM/SIGINT ; les tâches en
        cours d'exécution ne sont pas interrompues.
        """
        self.app_logger.info("Démarrage de l'agent Fleet Inventory en mode service")
        self.logger.log_startup(self.config)

        try:
            self._setup_signal_handlers()
            self.start_scheduler()
            self.running = True

            self.app_logger.info("✅ Agent démarré avec succès")

            while self.running and not self.shutdown_event.is_set():
                self.shutdown_event.wait(timeout=1.0)

        except KeyboardInterrupt:
            self.app_logger.info("Interruption clavier détectée")
        finally:
            self.shutdown()

    def run_update_mode(self, base: bool = False, rich: bool = False) -> bool:
        """
        Effectue une mise à jour unique

        Args:
            base: Seulement les faits de base
            rich: Seulement les faits détaillés
        """
        if base:
            return self.update_base_info()
        if rich:
            return self.update_rich_info()
        base_ok = self.update_base_info()
        rich_ok = self.update_rich_info()
        return base_ok and rich_ok

    def run_debug(self, function: str):
        """
        Exécute une seule collecte ou opération et retourne son résultat

        Args:
            function: Nom de la collecte ('os-info', 'hardware-info', ...)
                ou 'delete-user-profile'
        """
        if function == DELETE_USER_PROFILE:
            sid = input("SID de l'utilisateur: ").strip()
            if not sid:
                raise ValueError("Veuillez saisir un SID valide")
            if not self._open_task_store():
                raise ValueError("File locale des tâches indisponible")
            task = Task(id=0, task={'name': DELETE_USER_PROFILE, 'parameters': {'sid': sid}})
            status, result = self.executor.execute(task)
            return {'task_status': status.value, 'task_result': result}

        functions = self.collector.debug_functions()
        if function not in functions:
            raise KeyError(f"Fonction inconnue: {function} (disponibles: {', '.join(sorted(functions))})")
        return functions[function]()

    def _setup_signal_handlers(self):
        """
        Configure les gestionnaires de signaux pour l'arrêt propre
        """
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self.app_logger.info(f"Signal {signal_name} reçu - Arrêt en cours...")
            self.running = False
            self.shutdown_event.set()

        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)
        if hasattr(signal, 'SIGINT'):
            signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, 'SIGBREAK'):
            signal.signal(signal.SIGBREAK, signal_handler)

    def shutdown(self):
        """
        Arrête proprement le planificateur
        """
        if not self.running and not self.scheduler:
            return

        self.app_logger.info("🛑 Arrêt de l'agent Fleet Inventory...")
        self.running = False
        self.shutdown_event.set()
        self.stop_scheduler()
        self.app_logger.info("✅ Agent arrêté proprement")

    def get_status(self):
        """
        Retourne le statut actuel de l'agent

        Returns:
            dict: Statut de tous les composants
        """
        status = {
            'running': self.running,
            'uuid': self.config.get_uuid(),
            'components': {
                'scheduler': {'active': self.scheduler is not None and self.scheduler.is_running},
                'collector': {'stats': self.collector.get_collection_stats()},
                'sender': {'stats': self.sender.get_stats()},
            },
            'config': {
                'file': self.config.config_file,
                'valid': self.config.validate()
            }
        }
        if self.scheduler:
            status['components']['scheduler'].update(self.scheduler.get_status())
        return status


def main():
    """
    Point d'entrée principal avec gestion des arguments de ligne de commande
    """
    parser = argparse.ArgumentParser(
        description='Agent d\'Inventaire - Collecte de l\'état du poste et exécution des tâches distantes'
    )

    parser.add_argument('--config', '-c', type=str, help='Chemin vers le fichier de configuration')
    parser.add_argument(
        '--mode', '-m',
        choices=['service', 'update', 'collect', 'debug'],
        default='service',
        help='Mode de fonctionnement de l\'agent'
    )
    parser.add_argument('--base', '-b', action='store_true', help='Mode update: seulement les faits de base')
    parser.add_argument('--rich', '-r', action='store_true', help='Mode update: seulement les faits détaillés')
    parser.add_argument('--function', '-f', type=str, help='Mode debug: fonction à exécuter')
    parser.add_argument('--create-config', action='store_true', help='Crée un fichier de configuration par défaut')
    parser.add_argument('--validate-config', action='store_true', help='Valide la configuration actuelle')
    parser.add_argument('--status', action='store_true', help='Affiche le statut de l\'agent')
    parser.add_argument('--output', '-o', type=str, help='Fichier de sortie pour les données (mode collect)')

    args = parser.parse_args()

    if args.create_config:
        config_path = args.config or input("Chemin du fichier de configuration à créer: ")
        try:
            create_default_config(config_path, kind='agent')
            print(f"✅ Configuration par défaut créée: {config_path}")
            return 0
        except OSError as e:
            print(f"❌ Erreur création configuration: {e}")
            return 1

    if args.validate_config:
        if AgentConfig(args.config).validate():
            print("✅ Configuration valide")
            return 0
        print("❌ Configuration invalide")
        return 1

    try:
        agent = FleetInventoryAgent(args.config)
    except Exception as e:
        print(f"❌ Erreur initialisation agent: {e}")
        return 1

    if args.status:
        status = agent.get_status()
        print(f"UUID: {status['uuid'] or 'non enregistré'}")
        print(f"Config File: {status['config']['file']}")
        print(f"Config Valid: {'✅' if status['config']['valid'] else '❌'}")
        return 0

    try:
        if args.mode == 'service':
            agent.run_service_mode()

        elif args.mode == 'update':
            if not agent.run_update_mode(base=args.base, rich=args.rich):
                print("❌ Mise à jour incomplète, voir les logs")
                return 1
            print("✅ Mise à jour envoyée")

        elif args.mode == 'collect':
            data = {'os': agent.collector.collect_base()}
            data.update(agent.collector.collect_rich())
            text = json.dumps(to_json(data), indent=2, ensure_ascii=False)
            if args.output:
                with open(args.output, 'w', encoding='utf-8') as f:
                    f.write(text)
                print(f"✅ Données sauvegardées dans: {args.output}")
            else:
                print(text)

        elif args.mode == 'debug':
            if not args.function:
                print("❌ --function est requis en mode debug")
                return 1
            result = agent.run_debug(args.function)
            print(json.dumps(to_json(result), indent=2, ensure_ascii=False, default=str))
            if agent.executor is not None:
                agent.executor.wait()

        return 0

    except KeyboardInterrupt:
        print("\n🛑 Arrêt demandé par l'utilisateur")
        return 0
    except (KeyError, ValueError) as e:
        print(f"❌ Erreur: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
