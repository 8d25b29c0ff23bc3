"""Shared fixtures: SQLite game tables, fake object store and converter stubs."""

from __future__ import annotations

import os
import tempfile
import threading
import time
from pathlib import Path

# Settings are read at import time; point them at throwaway locations first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("WORK_DIR", tempfile.mkdtemp(prefix="table-importer-tests-"))
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:6399/0")

import pytest
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, func, select
from sqlalchemy.pool import StaticPool

from table_importer.core.errors import ConversionError
from table_importer.services.conversion_lock import FileConversionLock
from table_importer.services.converter import ConversionResult
from table_importer.services.executable_guard import ExecutableGuard
from table_importer.services.export_pipeline import ExportCoordinator
from table_importer.services.import_pipeline import ImportCoordinator, ImportJob
from table_importer.services.pipeline import PipelineOptions, UploadedFile
from table_importer.services.table_store import SqlAlchemyTableStore
from table_importer.storage.s3_client import ObjectStoreError
from table_importer.storage.staging import StagingArea

WIDGET_TABLE = "table_widget_data"
WIDGET_CSV = "tblidx,name\n1,Foo\n2,Bar\n"


class FakeObjectStore:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_list = False
        self.fail_remove = False
        self.fail_upload = False

    def list(self, prefix: str) -> list[str]:
        if self.fail_list:
            raise ObjectStoreError("list unavailable")
        return [key for key in self.objects if key.startswith(prefix)]

    def remove(self, keys) -> None:
        if self.fail_remove:
            raise ObjectStoreError("remove unavailable")
        for key in keys:
            self.objects.pop(key, None)

    def upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        if self.fail_upload:
            raise ObjectStoreError("upload unavailable")
        self.objects[key] = data

    def public_url(self, key: str) -> str:
        return f"https://files.example.test/{key}"


class StubConverter:
    """In-process stand-in for the converter executable.

    Writes ``output`` as ``<first arg>.<extension>`` into the output dir and
    records the interval during which it "ran".
    """

    def __init__(
        self,
        output: str | None = WIDGET_CSV,
        *,
        extension: str = "csv",
        delay: float = 0.0,
        fail: bool = False,
    ) -> None:
        self.output = output
        self.extension = extension
        self.delay = delay
        self.fail = fail
        self.calls: list[list[str]] = []
        self.intervals: list[tuple[float, float]] = []
        self._lock = threading.Lock()

    def convert(self, args, *, input_path: Path, output_dir: Path) -> ConversionResult:
        start = time.monotonic()
        with self._lock:
            self.calls.append(list(args))
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise ConversionError("Conversion failed with exit code 3", "bad rdf header")
        if self.output is not None:
            (output_dir / f"{args[0]}.{self.extension}").write_text(self.output)
        with self._lock:
            self.intervals.append((start, time.monotonic()))
        return ConversionResult(0, "ok", "")


class StaticGuard(ExecutableGuard):
    def __init__(self, ok: bool = True) -> None:
        super().__init__("/nonexistent")
        self.ok = ok
        self.calls = 0

    def verify(self) -> bool:
        self.calls += 1
        return self.ok


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    metadata = MetaData()
    Table(
        WIDGET_TABLE,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("table_id", String(64), nullable=False),
        Column("tblidx", Integer),
        Column("name", String(64)),
    )
    Table("table_without_scope", metadata, Column("id", Integer, primary_key=True))
    metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def widget_rows(engine):
    """Return a callable listing (tblidx, name) for a table_id, ordered by tblidx."""
    table = Table(WIDGET_TABLE, MetaData(), autoload_with=engine)

    def rows(table_id: str) -> list[tuple]:
        with engine.connect() as conn:
            result = conn.execute(
                select(table.c.tblidx, table.c.name)
                .where(table.c.table_id == table_id)
                .order_by(table.c.tblidx)
            )
            return [tuple(row) for row in result]

    def count(table_id: str) -> int:
        with engine.connect() as conn:
            return conn.execute(
                select(func.count()).select_from(table).where(table.c.table_id == table_id)
            ).scalar_one()

    rows.count = count
    rows.table = table
    return rows


@pytest.fixture
def work_dir(tmp_path) -> Path:
    path = tmp_path / "exports"
    path.mkdir()
    return path


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def staging(work_dir, object_store) -> StagingArea:
    return StagingArea(work_dir, object_store)


@pytest.fixture
def lock(work_dir) -> FileConversionLock:
    return FileConversionLock(work_dir / ".lock")


@pytest.fixture
def options() -> PipelineOptions:
    return PipelineOptions(
        max_retries=3,
        retry_interval_ms=5,
        request_timeout=10.0,
        output_wait=0.2,
        output_poll_interval=0.01,
    )


@pytest.fixture
def make_importer(engine, staging, lock, options, work_dir):
    def build(
        converter=None,
        *,
        guard=None,
        table_store=None,
        atomic: bool = True,
        tenant_locks=None,
        **kwargs,
    ) -> ImportCoordinator:
        return ImportCoordinator(
            guard=guard or StaticGuard(),
            lock=lock,
            staging=staging,
            converter=converter or StubConverter(),
            table_store=table_store or SqlAlchemyTableStore(engine, atomic=atomic),
            tenant_locks=tenant_locks
            or (lambda tenant: FileConversionLock(work_dir / ".locks" / f"{tenant}.lock")),
            options=kwargs.pop("options", options),
            **kwargs,
        )

    return build


@pytest.fixture
def make_exporter(engine, staging, lock, options, object_store):
    def build(converter=None, *, guard=None, store="default", **kwargs) -> ExportCoordinator:
        return ExportCoordinator(
            guard=guard or StaticGuard(),
            lock=lock,
            staging=staging,
            converter=converter or StubConverter("RDF-BYTES", extension="rdf"),
            table_store=SqlAlchemyTableStore(engine),
            object_store=object_store if store == "default" else store,
            options=options,
            **kwargs,
        )

    return build


def widget_job(tenant_id: str = "T1", content: bytes = b"\x00RDF\x01", **kwargs) -> ImportJob:
    return ImportJob(
        tenant_id=tenant_id,
        table_name=kwargs.pop("table_name", WIDGET_TABLE),
        upload=UploadedFile(filename="widgets.rdf", content=content),
        **kwargs,
    )


@pytest.fixture
def history_sessions():
    """Session factory over a fresh SQLite database holding ``import_runs``."""
    from sqlalchemy.orm import sessionmaker

    from table_importer.db.base import Base
    from table_importer.db.models import ImportRun  # noqa: F401

    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()
