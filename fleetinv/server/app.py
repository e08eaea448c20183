"""
Application Flask du serveur d'inventaire

Expose sous /api/v1 :
- Les routes appelées par les agents (enregistrement, envois, tâches)
- Les routes de consultation et de pilotage pour les opérateurs
Les erreurs métier sont traduites en codes HTTP par des gestionnaires
d'erreurs communs.
"""

import sys
import argparse
import logging
from typing import Any, Dict, Optional

from flask import Blueprint, Flask, jsonify, request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ..core.config import ServerConfig, create_default_config
from ..core.database import ServerBase, make_engine, make_session_factory
from ..core.logger import SERVER_LOGGER_NAME, InventoryLogger
from ..core.protocol import (
    BatteriesPush,
    HardwareReport,
    LicensesPush,
    OsReport,
    ProfilesPush,
    ProtocolError,
    Register,
    SoftwarePush,
    TaskBundle,
    TaskRequest,
    TaskUpdate,
    VolumesPush,
    describe_validation_error,
)
from . import queries
from .identity import IdentityCache
from .reconcile import SnapshotReconciler
from .registry import EndpointNotFound, EndpointRegistry
from .tasks import InvalidTaskTransition, TaskManager, TaskNotFound


API_PREFIX = '/api/v1'


class InventoryServerApp:
    """
    Serveur central d'inventaire

    Cette classe assemble la base, les composants métier et
    l'application Flask qui les expose.
    """

    def __init__(self, config_path: Optional[str] = None, config: Optional[ServerConfig] = None):
        """
        Initialise le serveur

        Args:
            config_path: Chemin vers le fichier de configuration
            config: Configuration déjà chargée (prioritaire sur config_path)
        """
        # Configuration
        self.config = config or ServerConfig(config_path)

        # Logger
        self.logger = InventoryLogger(self.config, SERVER_LOGGER_NAME)
        self.app_logger = self.logger.get_logger()

        # Base de données
        self.engine = make_engine(self.config.get_database_url())
        ServerBase.metadata.create_all(self.engine)
        self.get_session = make_session_factory(self.engine)

        # Composants métier
        self.identity_cache = IdentityCache()
        self.registry = EndpointRegistry(self.get_session, self.logger)
        self.reconciler = SnapshotReconciler(self.get_session, self.identity_cache, self.logger)
        self.tasks = TaskManager(self.get_session, self.logger)

        # Application Flask
        self.app = Flask(__name__)
        self.api_token = self.config.get_server_config()['api_token']

        # Désactiver les logs Flask pour éviter la pollution
        log = logging.getLogger('werkzeug')
        log.setLevel(logging.ERROR)

        self._register_error_handlers()
        self._register_routes()

        self.app_logger.info("Serveur d'inventaire initialisé")

    def _register_error_handlers(self):
        """Traduit les erreurs métier en réponses JSON"""

        @self.app.errorhandler(ProtocolError)
        def protocol_error(error):
            self.app_logger.warning(f"Requête invalide sur {request.path}: {error}")
            return _error(str(error), 400)

        @self.app.errorhandler(ValidationError)
        def validation_error(error):
            message = describe_validation_error(error)
            self.app_logger.warning(f"Charge invalide sur {request.path}: {message}")
            return _error(message, 400)

        @self.app.errorhandler(EndpointNotFound)
        def endpoint_not_found(error):
            self.app_logger.warning(str(error))
            return _error(str(error), 404)

        @self.app.errorhandler(TaskNotFound)
        def task_not_found(error):
            self.app_logger.warning(str(error))
            return _error(str(error), 404)

        @self.app.errorhandler(InvalidTaskTransition)
        def invalid_transition(error):
            self.app_logger.warning(str(error))
            return _error(str(error), 409)

        @self.app.errorhandler(SQLAlchemyError)
        def database_error(error):
            self.app_logger.exception(f"Erreur base de données sur {request.path}")
            return _error("Erreur base de données", 500)

    def _register_routes(self):
        """
        Enregistre toutes les routes de l'API

        Les routes sont regroupées dans un blueprint monté sous /api/v1.
        """
        api = Blueprint('api_v1', __name__)

        @api.before_request
        def check_token():
            """Vérifie le jeton Bearer si un jeton d'API est configuré"""
            if not self.api_token or request.endpoint == 'api_v1.health':
                return None
            header = request.headers.get('Authorization', '')
            if header != f'Bearer {self.api_token}':
                return _error("Jeton d'authentification invalide ou manquant", 401)
            return None

        @api.route('/health', methods=['GET'])
        def health():
            return jsonify({'success': True, 'status': 'ok'})

        # Routes des agents

        @api.route('/register', methods=['POST'])
        def register():
            registration = Register.model_validate(_json_body())
            _, response = self.registry.register(registration)
            return jsonify(response.model_dump(mode="json", exclude_none=True)), 201

        @api.route('/os/<uuid>', methods=['POST'])
        def push_os(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            self.reconciler.update_os(endpoint.id, OsReport.model_validate(_json_body()))
            return _ok("Système mis à jour")

        @api.route('/hardware/<uuid>', methods=['POST'])
        def push_hardware(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            self.reconciler.update_hardware(endpoint.id, HardwareReport.model_validate(_json_body()))
            return _ok("Matériel mis à jour")

        @api.route('/profiles/<uuid>', methods=['POST'])
        def push_profiles(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            stats = self.reconciler.update_profiles(endpoint.id, ProfilesPush.model_validate(_json_body()).profiles)
            return _ok("Profils mis à jour", stats=stats)

        @api.route('/software/<uuid>', methods=['POST'])
        def push_software(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            count = self.reconciler.update_software(endpoint.id, SoftwarePush.model_validate(_json_body()).software)
            return _ok("Logiciels mis à jour", count=count)

        @api.route('/licenses/<uuid>', methods=['POST'])
        def push_licenses(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            stats = self.reconciler.update_licenses(endpoint.id, LicensesPush.model_validate(_json_body()).licenses)
            return _ok("Licences mises à jour", stats=stats)

        @api.route('/status/<uuid>/volumes', methods=['POST'])
        def push_volumes(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            self.reconciler.update_volumes(endpoint.id, VolumesPush.model_validate(_json_body()).volumes)
            return _ok("Volumes mis à jour")

        @api.route('/status/<uuid>/battery', methods=['POST'])
        def push_battery(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            self.reconciler.update_batteries(endpoint.id, BatteriesPush.model_validate(_json_body()).batteries)
            return _ok("Batteries mises à jour")

        @api.route('/tasks/<uuid>', methods=['GET'])
        def get_tasks(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            pending = self.tasks.fetch_pending(endpoint.id)
            return jsonify(TaskBundle(tasks=pending).model_dump(mode="json"))

        @api.route('/tasks/<uuid>', methods=['POST'])
        def update_task(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            status = self.tasks.update_status(endpoint.id, TaskUpdate.model_validate(_json_body()))
            return _ok("État de la tâche enregistré", task_status=status.value)

        # Routes opérateur

        @api.route('/clients', methods=['GET'])
        def list_clients():
            return jsonify({'clients': self.registry.list_endpoints()})

        @api.route('/clients/<uuid>', methods=['GET'])
        def client_detail(uuid):
            detail = self.registry.describe(uuid)
            with self.get_session() as session:
                endpoint = self.registry.get_endpoint(uuid, session)
                detail['hardware'] = queries.describe_hardware(session, endpoint.id)
                detail['status'] = queries.describe_status(session, endpoint.id)
            return jsonify(detail)

        @api.route('/clients/<uuid>/profiles', methods=['GET'])
        def client_profiles(uuid):
            with self.get_session() as session:
                endpoint = self.registry.get_endpoint(uuid, session)
                profiles = queries.list_profiles(session, endpoint.id)
            return jsonify({'profiles': profiles})

        @api.route('/clients/<uuid>/profiles/<sid>/paths', methods=['GET'])
        def client_profile_paths(uuid, sid):
            with self.get_session() as session:
                endpoint = self.registry.get_endpoint(uuid, session)
                paths = queries.list_profile_paths(session, endpoint.id, sid)
            return jsonify({'sid': sid, 'paths': paths})

        @api.route('/clients/<uuid>/profiles/<sid>/delete', methods=['POST'])
        def client_delete_profile(uuid, sid):
            endpoint = self.registry.get_endpoint(uuid)
            task_id = self.tasks.delete_user_profile(endpoint.id, sid)
            return _ok("Suppression du profil planifiée", code=201, id=task_id)

        @api.route('/clients/<uuid>/software', methods=['GET'])
        def client_software(uuid):
            with self.get_session() as session:
                endpoint = self.registry.get_endpoint(uuid, session)
                software = queries.list_endpoint_software(session, endpoint.id)
            return jsonify({'software': software})

        @api.route('/clients/<uuid>/licenses', methods=['GET'])
        def client_licenses(uuid):
            with self.get_session() as session:
                endpoint = self.registry.get_endpoint(uuid, session)
                licenses = queries.list_licenses(session, endpoint.id)
            return jsonify({'licenses': licenses})

        @api.route('/clients/<uuid>/tasks', methods=['GET'])
        def client_tasks(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            return jsonify({'tasks': self.tasks.list_tasks(endpoint.id)})

        @api.route('/clients/<uuid>/tasks', methods=['POST'])
        def client_create_task(uuid):
            endpoint = self.registry.get_endpoint(uuid)
            task_request = TaskRequest.model_validate(_json_body())
            task_id = self.tasks.create_task(
                endpoint.id, task_request.name, task_request.parameters, task_request.time_start
            )
            return _ok("Tâche créée", code=201, id=task_id)

        @api.route('/software', methods=['GET'])
        def software_catalog():
            with self.get_session() as session:
                catalog = queries.software_catalog(session)
            return jsonify({'software': catalog})

        @api.route('/admin/identity-cache/clear', methods=['POST'])
        def clear_identity_cache():
            self.identity_cache.clear()
            self.app_logger.info("Cache des identités vidé")
            return _ok("Cache des identités vidé")

        self.app.register_blueprint(api, url_prefix=API_PREFIX)

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """
        Lance le serveur Flask (un thread par requête)

        Args:
            host: Adresse d'écoute (sinon celle de la configuration)
            port: Port d'écoute (sinon celui de la configuration)
            debug: Mode debug Flask
        """
        server_config = self.config.get_server_config()
        host = host or server_config['host']
        port = port or server_config['port']
        self.logger.log_startup(self.config)
        self.app_logger.info(f"Serveur d'inventaire à l'écoute sur http://{host}:{port}{API_PREFIX}")
        self.app.run(host=host, port=port, debug=debug, threaded=True)


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ProtocolError("Corps JSON attendu")
    return body


def _ok(message: str, code: int = 200, **extra):
    payload = {'success': True, 'message': message}
    payload.update(extra)
    return jsonify(payload), code


def _error(message: str, code: int):
    return jsonify({'success': False, 'message': message}), code


def create_app(config_path: Optional[str] = None) -> Flask:
    """Fabrique d'application pour les serveurs WSGI"""
    return InventoryServerApp(config_path).app


def main():
    """
    Point d'entrée du serveur avec gestion des arguments de ligne de commande
    """
    parser = argparse.ArgumentParser(
        description='Serveur d\'Inventaire - Registre central des postes et des tâches'
    )
    parser.add_argument('--config', '-c', type=str, help='Chemin vers le fichier de configuration')
    parser.add_argument('--create-config', action='store_true',
                        help='Crée un fichier de configuration par défaut')
    parser.add_argument('--host', type=str, help='Adresse d\'écoute')
    parser.add_argument('--port', type=int, help='Port d\'écoute')

    args = parser.parse_args()

    if args.create_config:
        config_path = args.config or input("Chemin du fichier de configuration à créer: ")
        try:
            create_default_config(config_path, kind='server')
            print(f"✅ Configuration par défaut créée: {config_path}")
            return 0
        except OSError as e:
            print(f"❌ Erreur création configuration: {e}")
            return 1

    config = ServerConfig(args.config)
    if not config.validate():
        print("❌ Configuration invalide")
        return 1

    try:
        server = InventoryServerApp(config=config)
    except SQLAlchemyError as e:
        print(f"❌ Erreur initialisation base de données: {e}")
        return 1

    try:
        server.run(host=args.host, port=args.port)
    except KeyboardInterrupt:
        print("\n🛑 Arrêt demandé par l'utilisateur")
    return 0


if __name__ == '__main__':
    sys.exit(main())
