"""
Module collecteur principal pour l'agent d'inventaire

Ce module orchestre les collecteurs spécialisés :
- Faits de base (système, nom du poste), collectés chaque minute
- Faits détaillés (matériel, profils, logiciels, licences, volumes,
  batteries), collectés toutes les cinq minutes
"""

import time
from typing import Any, Callable, Dict

from ..collectors.hardware import HardwareCollector
from ..collectors.licenses import LicenseCollector
from ..collectors.profiles import ProfileCollector
from ..collectors.software import SoftwareCollector
from ..collectors.status import StatusCollector
from ..collectors.system import SystemCollector
from ..core.protocol import OsReport


class InventoryCollector:
    """
    Collecteur principal qui orchestre toute la collecte d'inventaire

    Les collectes désactivées dans la configuration ne figurent pas dans
    le résultat et ne sont donc pas envoyées.
    """

    def __init__(self, config, logger):
        """
        Initialise le collecteur principal

        Args:
            config: Instance de AgentConfig
            logger: Instance de InventoryLogger
        """
        self.config = config
        self.logger = logger.get_logger()

        # Configuration de collecte
        agent_config = config.get_agent_config()
        self.collect_software = agent_config['collect_software']
        self.collect_hardware = agent_config['collect_hardware']
        self.collect_profiles = agent_config['collect_profiles']
        self.collect_licenses = agent_config['collect_licenses']

        # Collecteurs spécialisés
        self.system_collector = SystemCollector(config, self.logger)
        self.hardware_collector = HardwareCollector(config, self.logger)
        self.software_collector = SoftwareCollector(config, self.logger)
        self.profile_collector = ProfileCollector(config, self.logger)
        self.license_collector = LicenseCollector(config, self.logger)
        self.status_collector = StatusCollector(config, self.logger)

        self.logger.info("InventoryCollector initialisé")
        self.logger.info(f"Collecte logiciels: {self.collect_software}")
        self.logger.info(f"Collecte matériel: {self.collect_hardware}")
        self.logger.info(f"Collecte profils: {self.collect_profiles}")
        self.logger.info(f"Collecte licences: {self.collect_licenses}")

    def collect_base(self) -> OsReport:
        """
        Collecte les faits de base du poste

        Returns:
            OsReport: Système et nom du poste
        """
        return self.system_collector.collect()

    def collect_rich(self) -> Dict[str, Any]:
        """
        Collecte les faits détaillés du poste

        Returns:
            dict: Résultats par type ('hardware', 'profiles', 'software',
                'licenses', 'volumes', 'batteries')
        """
        start_time = time.time()
        self.logger.info("=== Début de collecte détaillée ===")

        inventory: Dict[str, Any] = {}

        if self.collect_hardware:
            inventory['hardware'] = self.hardware_collector.collect()
        if self.collect_profiles:
            inventory['profiles'] = self.profile_collector.collect()
        if self.collect_software:
            inventory['software'] = self.software_collector.collect()
        inventory['volumes'] = self.status_collector.collect_volumes()
        if self.collect_licenses:
            inventory['licenses'] = self.license_collector.collect()
        inventory['batteries'] = self.status_collector.collect_batteries()

        self.logger.info(f"=== Collecte détaillée terminée en {time.time() - start_time:.2f}s ===")
        return inventory

    def debug_functions(self) -> Dict[str, Callable[[], Any]]:
        """Collectes exécutables une à une depuis la ligne de commande"""
        return {
            'os-info': self.system_collector.collect,
            'hardware-info': self.hardware_collector.collect,
            'software-list': self.software_collector.collect,
            'user-profiles': self.profile_collector.collect,
            'windows-key': self.license_collector.collect,
            'system-status': self.status_collector.collect_volumes,
            'power-status': self.status_collector.collect_batteries,
        }

    def get_collection_stats(self) -> Dict[str, Any]:
        collectors = [
            self.system_collector,
            self.hardware_collector,
            self.software_collector,
            self.profile_collector,
            self.license_collector,
            self.status_collector,
        ]
        return {c.collector_name: c.get_collection_stats() for c in collectors}
