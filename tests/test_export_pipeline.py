from __future__ import annotations

import pytest
from sqlalchemy import insert

from table_importer.core.errors import (
    ConfigurationError,
    ConversionError,
    ResourceBusyError,
    StorageUploadError,
)
from table_importer.services.export_pipeline import (
    ExportJob,
    ExportStage,
    export_columns,
)

from conftest import WIDGET_TABLE, StubConverter


class CapturingConverter(StubConverter):
    """Records the CSV handed to the export tool before writing the RDF."""

    def __init__(self) -> None:
        super().__init__("RDF-BYTES", extension="rdf")
        self.seen_csv: str | None = None

    def convert(self, args, *, input_path, output_dir):
        self.seen_csv = input_path.read_text()
        return super().convert(args, input_path=input_path, output_dir=output_dir)


@pytest.fixture
def seeded(engine, widget_rows):
    with engine.begin() as conn:
        conn.execute(
            insert(widget_rows.table),
            [
                {"table_id": "T1", "tblidx": 1, "name": "Foo"},
                {"table_id": "T1", "tblidx": 2, "name": "Bar"},
                {"table_id": "T2", "tblidx": 3, "name": "Other"},
            ],
        )


def test_export_uploads_rdf_for_tenant(make_exporter, object_store, work_dir, seeded):
    converter = CapturingConverter()
    job = ExportJob(tenant_id="T1", table_name=WIDGET_TABLE)

    result = make_exporter(converter).run(job)

    assert result.file_path == f"T1/{WIDGET_TABLE}.rdf"
    assert result.download_url == f"https://files.example.test/T1/{WIDGET_TABLE}.rdf"
    assert result.rows == 2
    assert object_store.objects[result.file_path] == b"RDF-BYTES"
    assert converter.calls == [[WIDGET_TABLE, "T1"]]
    assert converter.seen_csv.splitlines() == ["tblidx,name", "1,Foo", "2,Bar"]
    assert job.stages[-3:] == [ExportStage.UPLOADED, ExportStage.CLEANED, ExportStage.DONE]
    assert not (work_dir / ".lock").exists()
    assert not (work_dir / "T1").exists()


def test_export_without_object_store_is_a_configuration_error(make_exporter):
    converter = CapturingConverter()

    with pytest.raises(ConfigurationError):
        make_exporter(converter, store=None).run(ExportJob(tenant_id="T1", table_name=WIDGET_TABLE))

    assert converter.calls == []


def test_upload_failure_releases_lock_and_cleans_up(make_exporter, object_store, work_dir, seeded):
    object_store.fail_upload = True
    job = ExportJob(tenant_id="T1", table_name=WIDGET_TABLE)

    with pytest.raises(StorageUploadError):
        make_exporter(CapturingConverter()).run(job)

    assert job.stages[-2:] == [ExportStage.UNLOCKED, ExportStage.FAILED]
    assert not (work_dir / ".lock").exists()
    assert not (work_dir / "T1").exists()


def test_export_without_output_fails(make_exporter, work_dir):
    with pytest.raises(ConversionError):
        make_exporter(StubConverter(None)).run(ExportJob(tenant_id="T1", table_name=WIDGET_TABLE))

    assert not (work_dir / ".lock").exists()


def test_export_waits_on_the_shared_conversion_lock(make_exporter, lock):
    assert lock.try_acquire()
    converter = CapturingConverter()

    with pytest.raises(ResourceBusyError):
        make_exporter(converter).run(ExportJob(tenant_id="T1", table_name=WIDGET_TABLE))

    assert converter.calls == []


def test_export_columns_prefers_configured_order():
    assert export_columns("merchant_table", ["id", "price", "name", "tblidx"]) == [
        "tblidx",
        "name",
        "price",
    ]
    assert export_columns("anything", ["id", "table_id", "tblidx", "name", "created_at"]) == [
        "tblidx",
        "name",
    ]
