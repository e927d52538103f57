from pushpipe.db.database import Base, create_db_engine, create_session_factory, init_db

__all__ = ["Base", "create_db_engine", "create_session_factory", "init_db"]
