from .connection import get_db, init_db, with_retry

__all__ = ["get_db", "init_db", "with_retry"]
