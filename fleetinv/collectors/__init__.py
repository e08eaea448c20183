"""
Package des collecteurs de données pour l'agent d'inventaire

Ce package contient tous les collecteurs spécialisés :
- Collecteur de base (classe abstraite)
- Collecteurs système, matériel, logiciels
- Collecteurs profils utilisateurs, licences et état (volumes, batterie)
"""
