"""
Module de communication avec le serveur pour l'agent d'inventaire

Ce module gère :
- L'enregistrement du poste et la persistance de son UUID
- L'envoi des instantanés d'inventaire
- La récupération des tâches et le rapport de leur état
- La gestion des erreurs réseau

Les envois sont sans reprise : un échec est journalisé et le cycle
suivant renverra l'état courant du poste.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests
import urllib3
from pydantic import ValidationError

from .. import __version__
from ..core.protocol import (
    BatteriesPush,
    BatteryReport,
    HardwareReport,
    License,
    LicensesPush,
    OsReport,
    ProfileInfo,
    ProfilesPush,
    Register,
    SoftwareEntry,
    SoftwarePush,
    Task,
    TaskBundle,
    TaskUpdate,
    Volume,
    VolumesPush,
    describe_validation_error,
)

# Désactiver les warnings SSL si nécessaire
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


class InventorySender:
    """
    Gestionnaire de communication avec le serveur central

    Chaque méthode retourne un tuple (succès, message) et ne lève pas
    d'exception réseau.
    """

    def __init__(self, config, logger):
        """
        Initialise le sender avec la configuration

        Args:
            config: Instance de AgentConfig
            logger: Instance de InventoryLogger
        """
        self.config = config
        self.logger = logger.get_logger()

        # Configuration serveur
        server_config = config.get_server_config()
        self.server_url = server_config['url']
        self.auth_token = server_config['auth_token']
        self.timeout = server_config['timeout']
        self.verify_ssl = server_config['verify_ssl']

        # Statistiques de communication
        self.last_successful_send = None
        self.send_attempts = 0
        self.send_failures = 0

        self.logger.info("InventorySender initialisé")
        self.logger.info(f"URL serveur: {self.server_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': f'FleetInventoryAgent/{__version__}'
        }
        if self.auth_token:
            headers['Authorization'] = f'Bearer {self.auth_token}'
        return headers

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None,
                 expected=(200, 201)) -> Tuple[bool, Any]:
        """
        Effectue une requête HTTP vers le serveur

        Args:
            method: 'GET' ou 'POST'
            path: Chemin relatif à l'URL du serveur
            payload: Corps JSON éventuel
            expected: Codes HTTP considérés comme un succès

        Returns:
            Tuple[bool, Any]: (Succès, corps JSON de la réponse ou message d'erreur)
        """
        self.send_attempts += 1
        url = f"{self.server_url}{path}"

        try:
            if payload is not None:
                self.logger.debug(f"{method} {url} ({len(json.dumps(payload))} bytes)")
            response = requests.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
                verify=self.verify_ssl
            )

            if response.status_code in expected:
                self.last_successful_send = datetime.now()
                try:
                    return True, response.json()
                except ValueError:
                    return True, {}

            self.send_failures += 1
            if response.status_code == 401:
                error_msg = "Erreur d'authentification (token invalide ou manquant)"
            elif response.status_code == 404:
                error_msg = f"Ressource inconnue du serveur: {path}"
            elif response.status_code == 409:
                error_msg = f"Conflit signalé par le serveur: {response.text[:200]}"
            elif response.status_code == 400:
                error_msg = f"Données invalides: {response.text[:200]}"
            else:
                error_msg = f"Erreur serveur HTTP {response.status_code}: {response.text[:200]}"
            self.logger.error(f"{method} {path}: {error_msg}")
            return False, error_msg

        except requests.exceptions.Timeout:
            self.send_failures += 1
            error_msg = f"Timeout lors de l'envoi (>{self.timeout}s)"
            self.logger.error(f"{method} {path}: {error_msg}")
            return False, error_msg

        except requests.exceptions.ConnectionError as e:
            self.send_failures += 1
            error_msg = f"Erreur de connexion: {str(e)}"
            self.logger.error(f"{method} {path}: {error_msg}")
            return False, error_msg

        except requests.exceptions.RequestException as e:
            self.send_failures += 1
            error_msg = f"Erreur HTTP: {str(e)}"
            self.logger.error(f"{method} {path}: {error_msg}")
            return False, error_msg

    def _push(self, path: str, payload: Dict[str, Any], label: str) -> Tuple[bool, str]:
        success, body = self._request('POST', path, payload)
        if success:
            self.logger.info(f"{label} envoyé(s) avec succès")
            return True, body.get('message', 'Succès') if isinstance(body, dict) else 'Succès'
        return False, body

    def _uuid_or_error(self) -> Tuple[Optional[str], str]:
        endpoint_uuid = self.config.get_uuid()
        if not endpoint_uuid:
            return None, "Poste non enregistré"
        return endpoint_uuid, ""

    def register(self, name: str) -> Tuple[bool, str]:
        """
        Enregistre le poste auprès du serveur

        L'UUID déjà connu est renvoyé pour que le serveur réutilise le
        même poste ; l'UUID retourné est persisté dans la configuration.

        Args:
            name: Nom du poste

        Returns:
            Tuple[bool, str]: (Succès, UUID ou message d'erreur)
        """
        registration = Register(name=name, uuid=self.config.get_uuid())
        payload = registration.model_dump(mode="json", exclude_none=True)
        success, body = self._request('POST', '/register', payload, expected=(200, 201))
        if not success:
            return False, body

        try:
            response = Register.model_validate(body)
        except ValidationError as e:
            message = describe_validation_error(e)
            self.logger.error(f"Réponse d'enregistrement invalide: {message}")
            return False, message
        if not response.uuid:
            return False, "Réponse d'enregistrement sans UUID"

        if response.uuid != registration.uuid:
            try:
                self.config.set_uuid(response.uuid)
            except OSError as e:
                self.logger.error(f"Impossible de persister l'UUID du poste: {e}")
                return False, str(e)
            self.logger.info(f"Poste enregistré sous l'UUID {response.uuid}")
        return True, response.uuid

    def push_os(self, report: OsReport) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        return self._push(f'/os/{endpoint_uuid}', report.model_dump(mode="json"), "Système")

    def push_hardware(self, report: HardwareReport) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        return self._push(f'/hardware/{endpoint_uuid}', report.model_dump(mode="json"), "Matériel")

    def push_profiles(self, profiles: List[ProfileInfo]) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        payload = ProfilesPush(profiles=profiles).model_dump(mode="json")
        return self._push(f'/profiles/{endpoint_uuid}', payload, f"{len(profiles)} profil(s)")

    def push_software(self, software: List[SoftwareEntry]) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        payload = SoftwarePush(software=software).model_dump(mode="json")
        return self._push(f'/software/{endpoint_uuid}', payload, f"{len(software)} logiciel(s)")

    def push_licenses(self, licenses: List[License]) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        payload = LicensesPush(licenses=licenses).model_dump(mode="json")
        return self._push(f'/licenses/{endpoint_uuid}', payload, f"{len(licenses)} licence(s)")

    def push_volumes(self, volumes: List[Volume]) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        payload = VolumesPush(volumes=volumes).model_dump(mode="json")
        return self._push(f'/status/{endpoint_uuid}/volumes', payload, f"{len(volumes)} volume(s)")

    def push_battery(self, batteries: List[BatteryReport]) -> Tuple[bool, str]:
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        payload = BatteriesPush(batteries=batteries).model_dump(mode="json")
        return self._push(f'/status/{endpoint_uuid}/battery', payload, f"{len(batteries)} batterie(s)")

    def get_tasks(self) -> Tuple[bool, Any]:
        """
        Récupère les tâches en attente pour ce poste

        Returns:
            Tuple[bool, Any]: (Succès, liste de Task ou message d'erreur)
        """
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error

        success, body = self._request('GET', f'/tasks/{endpoint_uuid}', expected=(200,))
        if not success:
            return False, body
        try:
            tasks: List[Task] = TaskBundle.model_validate(body).tasks
        except ValidationError as e:
            message = describe_validation_error(e)
            self.logger.error(f"Liste de tâches invalide: {message}")
            return False, message
        return True, tasks

    def update_task(self, update: TaskUpdate) -> Tuple[bool, str]:
        """
        Rapporte l'état d'une tâche au serveur

        Args:
            update: Rapport d'état

        Returns:
            Tuple[bool, str]: (Succès, Message de résultat)
        """
        endpoint_uuid, error = self._uuid_or_error()
        if not endpoint_uuid:
            return False, error
        return self._push(
            f'/tasks/{endpoint_uuid}',
            update.model_dump(mode="json"),
            f"État {update.task_status.value} de la tâche {update.id}"
        )

    def get_stats(self) -> Dict[str, Any]:
        """
        Retourne les statistiques de communication

        Returns:
            dict: Statistiques d'envoi
        """
        return {
            'last_successful_send': self.last_successful_send.isoformat() if self.last_successful_send else None,
            'total_attempts': self.send_attempts,
            'total_failures': self.send_failures,
            'success_rate': ((self.send_attempts - self.send_failures) / self.send_attempts * 100) if self.send_attempts > 0 else 0,
            'server_url': self.server_url
        }
