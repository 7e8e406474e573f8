from .connection import get_db, init_db, create_engine_for_url, create_session_factory

__all__ = [
    'get_db', 'init_db', 'create_engine_for_url', 'create_session_factory',
]
