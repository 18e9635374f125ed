# storage.py
# Database engine + transactional sessions, and the JSON data dir used for the outbox.

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .tables import Base

log = logging.getLogger(__name__)


class Database:
    """Owns the engine. One instance per process, built at startup."""

    def __init__(self, url: str):
        kwargs = {}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # one shared connection, otherwise every session sees an empty db
                kwargs["poolclass"] = StaticPool
            else:
                Path(url.split("///", 1)[-1]).parent.mkdir(parents=True, exist_ok=True)
        self.url = url
        self.engine = create_engine(url, **kwargs)
        self._factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_all(self):
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Commit on clean exit, roll back on any exception."""
        session = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self):
        self.engine.dispose()


def read_json(path: Path):
    try:
        return json.loads(path.read_text())
    except FileNotFoundError:
        return []
    except ValueError:
        log.warning("Unreadable JSON in %s, starting empty", path)
        return []


def write_json(path: Path, obj: Any):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(obj, indent=2, default=str))
    tmp.replace(path)
