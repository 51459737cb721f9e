from protean.domain import Domain
from sqlalchemy import Engine, MetaData, create_engine, event

# Tables owned by the atomic ledgers (stock units, payment counters)
ledger_metadata = MetaData()


def ledger_engine(database_uri: str) -> Engine:
    """Engine for the ledger tables, creating them if missing."""
    if not database_uri.startswith("sqlite"):
        engine = create_engine(database_uri)
        ledger_metadata.create_all(engine)
        return engine

    engine = create_engine(database_uri, connect_args={"check_same_thread": False, "timeout": 30})

    # SQLite: take the write lock at BEGIN so concurrent writers queue instead of deadlocking
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    ledger_metadata.create_all(engine)
    return engine


def setup_db(domain: Domain):
    """Create aggregate tables for SQL-backed providers; memory providers need nothing."""
    with domain.domain_context():
        for _, provider in domain.providers.items():
            if provider.conn_info["provider"] in ("sqlite", "postgresql"):
                engine = create_engine(provider.conn_info["database_uri"])

                # Touch each repository's DAO so its model is registered with SQLAlchemy
                for _, aggregate_record in domain.registry.aggregates.items():
                    if aggregate_record.cls.meta_.provider == provider.name:
                        domain.repository_for(aggregate_record.cls)._dao  # noqa: B018

                for _, entity_record in domain.registry.entities.items():
                    if entity_record.cls.meta_.provider == provider.name:
                        domain.repository_for(entity_record.cls)._dao  # noqa: B018

                provider._metadata.create_all(engine)
