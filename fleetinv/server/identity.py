"""
Cache des identités utilisateurs

Les profils envoyés par les postes ne portent que le SID ; le serveur
les rattache à une ligne `identity`. Ce module fournit :
- Le cache bidirectionnel SID <-> identifiant, partagé entre requêtes
- La création atomique des identités
- Le découpage "DOMAINE\\utilisateur" des noms affichés
"""

import threading
from typing import Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.database import insert_ignore
from .models import Identity


def split_display_name(username: Optional[str], domain: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """
    Sépare domaine et nom d'utilisateur

    Si le domaine est fourni, le nom est pris tel quel. Sinon le nom est
    coupé sur la première barre oblique inverse : "CORP\\jdoe" donne
    ("jdoe", "CORP"), "jdoe" donne ("jdoe", None).

    Args:
        username: Nom affiché, éventuellement préfixé du domaine
        domain: Domaine déjà connu

    Returns:
        tuple: (nom, domaine)
    """
    if not username:
        return None, domain
    if domain:
        return username, domain
    if '\\' in username:
        domain_part, name_part = username.split('\\', 1)
        return name_part, domain_part or None
    return username, None


class IdentityCache:
    """
    Correspondance SID <-> identifiant en mémoire

    Les deux dictionnaires sont protégés par un seul verrou. Un échec de
    lecture retombe sur la base et remplit les deux sens ; remplir deux
    fois la même entrée est sans effet.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._by_sid: Dict[str, int] = {}
        self._by_id: Dict[int, str] = {}

    def resolve(self, session: Session, sid: str) -> Optional[int]:
        """
        Identifiant de l'identité portant ce SID

        Args:
            session: Session utilisée en cas d'absence du cache
            sid: SID recherché

        Returns:
            int: Identifiant, ou None si le SID est inconnu
        """
        with self._lock:
            identity_id = self._by_sid.get(sid)
        if identity_id is not None:
            return identity_id

        identity_id = session.execute(
            select(Identity.id).where(Identity.sid == sid)
        ).scalar_one_or_none()
        if identity_id is not None:
            self.remember(sid, identity_id)
        return identity_id

    def resolve_reverse(self, session: Session, identity_id: int) -> Optional[str]:
        """SID de l'identité, ou None si elle n'existe pas"""
        with self._lock:
            sid = self._by_id.get(identity_id)
        if sid is not None:
            return sid

        sid = session.execute(
            select(Identity.sid).where(Identity.id == identity_id)
        ).scalar_one_or_none()
        if sid is not None:
            self.remember(sid, identity_id)
        return sid

    def remember(self, sid: str, identity_id: int):
        with self._lock:
            self._by_sid[sid] = identity_id
            self._by_id[identity_id] = sid

    def clear(self):
        """Vide le cache (utile après une restauration de base)"""
        with self._lock:
            self._by_sid.clear()
            self._by_id.clear()

    def __len__(self):
        with self._lock:
            return len(self._by_sid)


def get_or_create_identity(session: Session, sid: str, username: Optional[str] = None,
                           domain: Optional[str] = None) -> Tuple[int, bool]:
    """
    Retourne l'identité du SID en la créant si besoin

    La création passe par un INSERT ... ON CONFLICT DO NOTHING : deux
    requêtes concurrentes pour le même SID aboutissent à une seule ligne.
    Le nom et le domaine sont rafraîchis s'ils sont fournis et ont changé.

    Args:
        session: Session de la transaction en cours
        sid: SID de l'utilisateur
        username: Nom affiché
        domain: Domaine

    Returns:
        tuple: (identifiant, créé dans cette transaction)
    """
    name, domain = split_display_name(username, domain)

    result = insert_ignore(
        session, Identity, {'sid': sid, 'username': name, 'domain': domain}, ['sid']
    )
    created = bool(result.rowcount)

    identity = session.execute(select(Identity).where(Identity.sid == sid)).scalar_one()
    if not created:
        if name is not None and identity.username != name:
            identity.username = name
        if domain is not None and identity.domain != domain:
            identity.domain = domain
    return identity.id, created
