"""
Module Server - Registre central de l'inventaire

Ce module contient :
- Le registre des postes
- Le cache des identités utilisateurs
- La réconciliation des instantanés
- Le cycle de vie des tâches distantes
- L'API Flask
"""
