"""Tests for the pipeline entry point."""

import json
from datetime import timedelta
from pathlib import Path

import pytest

from exposure.pipeline import ExposurePipeline, run_pipeline
from exposure.reporting import XlsxRenderer
from exposure.storage import InMemoryTableStore, RecordingDeliveryChannel
from exposure.utils.config import Config
from exposure.workflow import SelectionCriterion


@pytest.mark.asyncio
async def test_second_ingest_is_compared_with_the_first(config, export_rows, as_of):
    store = InMemoryTableStore()
    pipeline = ExposurePipeline(config=config, store=store)

    first = await pipeline.ingest(export_rows, snapshot_id="week-1", created_at=as_of - timedelta(days=7))
    second = await pipeline.ingest(export_rows[:2], snapshot_id="week-2", created_at=as_of)

    assert first.delta is None
    assert second.delta.previous_id == "week-1"
    assert second.delta.count.change_percent == -33.3
    assert second.delta.direction == "negative"
    assert len(await store.select(config.backend.snapshots_table)) == 2
    assert pipeline.latest is second


@pytest.mark.asyncio
async def test_ingest_result_is_json_serializable(config, export_rows, as_of):
    pipeline = ExposurePipeline(config=config)
    await pipeline.ingest(export_rows, snapshot_id="week-1", created_at=as_of - timedelta(days=7))
    result = await pipeline.ingest(export_rows, snapshot_id="week-2", created_at=as_of)

    payload = json.loads(json.dumps(result.to_dict()))

    assert payload["delta"]["previous_id"] == "week-1"
    assert payload["rejected"] == [{"row_index": 3, "reason": payload["rejected"][0]["reason"]}]
    assert payload["at_risk"][0]["level"] == "CRITICAL"


def test_compile_report_requires_an_ingest(config):
    with pytest.raises(LookupError):
        ExposurePipeline(config=config).compile_report()


@pytest.mark.asyncio
async def test_deploy_uses_latest_records(config, export_rows):
    pipeline = ExposurePipeline(config=config)
    await pipeline.start()
    await pipeline.ingest(export_rows)

    created = await pipeline.deploy_directive(SelectionCriterion.coverage("BI"), notes="Reserve check")

    assert sorted(item.claim_id for item in created) == ["65-100001", "65-100003"]
    assert pipeline.workflow.summary().by_status["assigned"] == 2
    await pipeline.stop()
    assert not pipeline.workflow.running


@pytest.mark.asyncio
async def test_export_delivers_rendered_report(export_rows, tmp_path):
    config = Config.from_dict({
        "backend": {"timeout": 10, "max_retries": 2, "backoff_base": 0},
        "report": {"output_dir": str(tmp_path)},
    })
    channel = RecordingDeliveryChannel()
    pipeline = ExposurePipeline(config=config, channel=channel)
    await pipeline.ingest(export_rows)

    exported = await pipeline.export_report(pipeline.compile_report(), ["claims-leadership"])

    assert Path(exported.render.artifact_ref).exists()
    assert exported.deliveries[0].success is True
    assert channel.sent[0]["document"].startswith(b"%PDF")


def test_run_pipeline_renders_report(export_rows, tmp_path):
    config = Config.from_dict({
        "backend": {"timeout": 10, "max_retries": 2, "backoff_base": 0},
        "report": {"output_dir": str(tmp_path)},
    })

    result = run_pipeline(export_rows, config=config)

    assert Path(result["artifact"]).exists()
    assert result["report"]["executive_summary"]["metrics"][0]["value"] == "3"
    assert result["ingest"]["snapshot"]["record_count"] == 3
    json.dumps(result)


def test_run_pipeline_without_render(export_rows, config):
    result = run_pipeline(export_rows, config=config, render=False)

    assert result["artifact"] is None
    assert result["quality"]["overall"] > 0


@pytest.mark.asyncio
async def test_backfilled_snapshot_is_compared_with_its_predecessor(config, export_rows, as_of):
    pipeline = ExposurePipeline(config=config)
    await pipeline.ingest(export_rows, snapshot_id="week-00", created_at=as_of - timedelta(weeks=20))
    for week in range(1, 13):
        await pipeline.ingest(export_rows, snapshot_id=f"week-{week:02d}", created_at=as_of - timedelta(weeks=13 - week))

    backfilled = await pipeline.ingest(
        export_rows[:1], snapshot_id="week-00b", created_at=as_of - timedelta(weeks=18)
    )

    assert backfilled.delta.previous_id == "week-00"


@pytest.mark.asyncio
async def test_snapshot_store_filters_on_created_at():
    store = InMemoryTableStore()
    await store.insert("events", [
        {"name": "a", "created_at": "2026-01-01T00:00:00+00:00"},
        {"name": "b", "created_at": "2026-01-08T00:00:00+00:00"},
        {"name": "c", "created_at": "2026-01-15T00:00:00+00:00"},
    ])

    before = await store.select("events", filters={"created_at__lt": "2026-01-08T00:00:00+00:00"})
    since = await store.select("events", filters={"created_at__gte": "2026-01-08T00:00:00+00:00"}, order_by="name")

    assert [row["name"] for row in before] == ["a"]
    assert [row["name"] for row in since] == ["b", "c"]
    with pytest.raises(ValueError):
        await store.select("events", filters={"created_at__near": "2026-01-08"})


def test_xlsx_format_selects_workbook_renderer(tmp_path):
    config = Config.from_dict({"report": {"format": "xlsx", "output_dir": str(tmp_path), "render_timeout": 45}})

    pipeline = ExposurePipeline(config=config)

    assert isinstance(pipeline.exporter.renderer, XlsxRenderer)
    assert pipeline.exporter.render_policy.timeout == 45
    assert pipeline.exporter.policy.timeout == config.backend.timeout


@pytest.mark.asyncio
async def test_deploy_notifies_through_pipeline_channel(config, export_rows):
    channel = RecordingDeliveryChannel()
    pipeline = ExposurePipeline(config=config, channel=channel)
    await pipeline.start()
    await pipeline.ingest(export_rows)

    created = await pipeline.deploy_directive(SelectionCriterion.coverage("BI"), notify=["claims-desk@example.com"])

    assert len(created) == 2
    assert channel.sent[0]["metadata"]["count"] == 2
    await pipeline.stop()
