"""
Module Core - Composants partagés par l'agent et le serveur

Ce module contient :
- Configuration
- Logging
- Accès base de données
- Types échangés sur le réseau
"""
