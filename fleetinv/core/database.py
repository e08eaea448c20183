"""
Accès aux bases relationnelles (SQLAlchemy)

Utilisé par le serveur pour l'inventaire central et par l'agent pour
sa file locale de tâches :
- Création du moteur (SQLite ou PostgreSQL)
- Sessions transactionnelles
- Insertion atomique "insert, on conflict ne rien faire"
"""

import os
from contextlib import contextmanager
from typing import Callable, ContextManager, Dict, Any, Iterator, List

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class ServerBase(DeclarativeBase):
    """Base déclarative des tables du serveur"""
    __table_args__ = {"sqlite_autoincrement": True}


class AgentBase(DeclarativeBase):
    """Base déclarative de la file locale des tâches de l'agent"""


def make_engine(database_url: str) -> Engine:
    """
    Crée un moteur SQLAlchemy

    Pour SQLite, le dossier du fichier est créé si nécessaire, la
    connexion est partagée entre threads et les clés étrangères activées.
    Chaque transaction commence par BEGIN IMMEDIATE : le verrou
    d'écriture est pris dès le début, avant les lectures, si bien que
    deux transactions concurrentes s'exécutent l'une après l'autre.
    Le pilote sqlite3 n'émet pas BEGIN lui-même (isolation_level=None)
    et le laisse à SQLAlchemy.

    Args:
        database_url: URL SQLAlchemy (sqlite:///... ou postgresql://...)

    Returns:
        Engine: Moteur configuré
    """
    if database_url.startswith("sqlite"):
        db_file = database_url.split("///", 1)[-1]
        db_dir = os.path.dirname(db_file)
        if db_file and db_file != ":memory:" and db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)

        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_immediate(connection):
            connection.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    return create_engine(database_url, pool_pre_ping=True, echo=False)


def make_session_factory(engine: Engine) -> Callable[[], ContextManager[Session]]:
    """
    Construit un gestionnaire de contexte transactionnel

    Chaque bloc `with get_session() as session:` est une transaction :
    commit à la sortie normale, rollback sur exception (propagée).
    """
    SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def get_session() -> Iterator[Session]:
        session = SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return get_session


def dialect_insert(session: Session, table):
    """
    Retourne une construction INSERT propre au dialecte de la session

    Les dialectes SQLite et PostgreSQL exposent `on_conflict_do_nothing`
    et `on_conflict_do_update`, qui servent aux créations atomiques.

    Args:
        session: Session SQLAlchemy
        table: Classe mappée ou Table

    Returns:
        Insert: Construction INSERT du dialecte
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Dialecte non supporté: {dialect}")
    return insert(table)


def insert_ignore(session: Session, table, values: Dict[str, Any], index_elements: List[str]):
    """
    Insère une ligne sauf si la clé naturelle existe déjà

    Args:
        session: Session SQLAlchemy
        table: Classe mappée
        values: Valeurs de la ligne
        index_elements: Colonnes de la contrainte d'unicité
    """
    statement = dialect_insert(session, table).values(**values)
    return session.execute(statement.on_conflict_do_nothing(index_elements=index_elements))


def upsert(session: Session, table, values: Dict[str, Any], index_elements: List[str],
           update_columns: List[str]):
    """
    Insère une ligne ou met à jour les colonnes indiquées en cas de conflit

    Args:
        session: Session SQLAlchemy
        table: Classe mappée
        values: Valeurs de la ligne
        index_elements: Colonnes de la contrainte d'unicité
        update_columns: Colonnes à rafraîchir si la ligne existe
    """
    statement = dialect_insert(session, table).values(**values)
    statement = statement.on_conflict_do_update(
        index_elements=index_elements,
        set_={column: statement.excluded[column] for column in update_columns},
    )
    return session.execute(statement)
