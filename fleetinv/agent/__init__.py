"""
Module Agent - Composants exécutés sur chaque poste

Ce module contient :
- La communication avec le serveur
- La planification des collectes
- La file locale et l'exécution des tâches distantes
- L'orchestration des collecteurs
"""
