"""
Résolution des entités de référence partagées

Un logiciel (nom + éditeur) et ses versions sont communs à tous les
postes : ils sont créés à la première apparition puis réutilisés.
Les clés de licence, elles, appartiennent à un poste et sont comparées
par nom à chaque envoi.
"""

from typing import Dict, Iterable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..core.database import insert_ignore
from ..core.protocol import License
from .models import LicenseKey, Software, SoftwareVersion


def resolve_software(session: Session, name: str, publisher: Optional[str] = None) -> int:
    """
    Identifiant du logiciel (nom, éditeur), créé s'il n'existe pas

    Un éditeur absent est stocké comme chaîne vide pour que la
    contrainte d'unicité s'applique.
    """
    publisher = publisher or ""
    insert_ignore(session, Software, {'name': name, 'publisher': publisher}, ['name', 'publisher'])
    return session.execute(
        select(Software.id).where(Software.name == name, Software.publisher == publisher)
    ).scalar_one()


def resolve_software_version(session: Session, name: str, version: str,
                             publisher: Optional[str] = None) -> int:
    """
    Identifiant de la version d'un logiciel, créée au besoin

    Deux postes qui rapportent le même logiciel dans la même version
    obtiennent le même identifiant, même en concurrence.

    Args:
        session: Session de la transaction en cours
        name: Nom du logiciel
        version: Version installée
        publisher: Éditeur (optionnel)

    Returns:
        int: Identifiant de la ligne software_version
    """
    software_id = resolve_software(session, name, publisher)
    insert_ignore(
        session,
        SoftwareVersion,
        {'software_id': software_id, 'version': version},
        ['software_id', 'version'],
    )
    return session.execute(
        select(SoftwareVersion.id).where(
            SoftwareVersion.software_id == software_id,
            SoftwareVersion.version == version,
        )
    ).scalar_one()


def update_license_keys(session: Session, endpoint_id: int, licenses: Iterable[License]) -> Dict[str, int]:
    """
    Aligne les clés de licence du poste sur la liste reçue

    - Nom absent en base : ajout
    - Nom présent avec une autre clé : mise à jour
    - Nom en base absent de la liste : suppression

    Args:
        session: Session de la transaction en cours
        endpoint_id: Identifiant du poste
        licenses: Licences rapportées

    Returns:
        dict: Nombre de lignes ajoutées, modifiées et supprimées
    """
    incoming = {}
    for lic in licenses:
        incoming[lic.name] = lic.key

    existing = {
        row.name: row
        for row in session.execute(
            select(LicenseKey).where(LicenseKey.endpoint_id == endpoint_id)
        ).scalars()
    }

    stats = {'added': 0, 'updated': 0, 'deleted': 0}

    to_delete = [name for name in existing if name not in incoming]
    if to_delete:
        session.execute(
            delete(LicenseKey).where(
                LicenseKey.endpoint_id == endpoint_id,
                LicenseKey.name.in_(to_delete),
            )
        )
        stats['deleted'] = len(to_delete)

    for name, key in incoming.items():
        row = existing.get(name)
        if row is None:
            session.add(LicenseKey(endpoint_id=endpoint_id, name=name, key=key))
            stats['added'] += 1
        elif row.key != key:
            row.key = key
            stats['updated'] += 1

    session.flush()
    return stats
