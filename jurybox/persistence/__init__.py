"""Session persistence, SQLite database layer and audit export."""

from jurybox.persistence.database import close_db, init_db
from jurybox.persistence.export import (
    build_audit_report,
    build_transcript,
    export_csv,
    export_json,
    export_markdown,
    render_transcript,
)
from jurybox.persistence.store import InMemorySessionStore, SessionStore, SQLiteSessionStore

__all__ = [
    "InMemorySessionStore",
    "SQLiteSessionStore",
    "SessionStore",
    "build_audit_report",
    "build_transcript",
    "close_db",
    "export_csv",
    "export_json",
    "export_markdown",
    "init_db",
    "render_transcript",
]
