"""
Fleet Inventory - Inventaire de parc et tâches distantes

Ce package fournit :
- Un agent qui collecte périodiquement l'état du poste (système, matériel,
  logiciels, profils, licences, volumes) et l'envoie au serveur central
- Un serveur qui réconcilie ces instantanés et distribue des tâches
  distantes aux postes

Author: Fleet Inventory Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Fleet Inventory Team"

from .core.config import AgentConfig, ServerConfig
from .core.logger import InventoryLogger

__all__ = ['AgentConfig', 'ServerConfig', 'InventoryLogger']
