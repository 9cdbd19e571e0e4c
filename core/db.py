import os

from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker

from core.config import cfg
from core.log import get_logger
from core.events import log_event, E

logger = get_logger(__name__)

DEFAULT_DB_URL = "sqlite:///data/consult.db"


class Db:
    def __init__(self, url: str = None):
        self.url = url or str(cfg.get("db", DEFAULT_DB_URL))
        self._engine = None
        self._session_factory = None

    def _ensure_sqlite_dir(self):
        url = make_url(self.url)
        if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
            return
        folder = os.path.dirname(url.database)
        if folder:
            os.makedirs(folder, exist_ok=True)

    @property
    def engine(self):
        if self._engine is None:
            self._ensure_sqlite_dir()
            kwargs = {"pool_pre_ping": True}
            if self.url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
            self._engine = create_engine(self.url, **kwargs)
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._engine

    def get_session(self):
        if self._session_factory is None:
            _ = self.engine
        return self._session_factory()

    def create_tables(self):
        # 导入全部模型，确保 metadata 完整
        from core.models import Base

        Base.metadata.create_all(self.engine)
        log_event(logger, E.SYSTEM_DB_INIT, url=make_url(self.url).render_as_string(hide_password=True))


DB = Db()
