"""Database package."""

from certchain.db.models import AnchorStrategy, Base, CertificateRecord, CertificateStatus
from certchain.db.session import DbSession, close_db, get_db_session, init_db

__all__ = [
    "DbSession",
    "get_db_session",
    "init_db",
    "close_db",
    "Base",
    "AnchorStrategy",
    "CertificateRecord",
    "CertificateStatus",
]
