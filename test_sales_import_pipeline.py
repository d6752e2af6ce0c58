from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from marketplace_analytics.schemas.sales_import import IngestionJob
from marketplace_analytics.services.sales_import.errors import (
    InvalidInput,
    NoValidRows,
    PersistenceError,
    ReportNotFound,
    UnsupportedFormat,
)
from marketplace_analytics.services.sales_import.pipeline import (
    IngestionPipeline,
    IngestionState,
    ingest_report_file,
)

TODAY = date(2025, 6, 1)

WB_HEADER = "Дата продажи,Артикул WB,Наименование,Цена продажи,Количество,Комиссия WB"


def _csv(*lines):
    return "\n".join((WB_HEADER,) + lines).encode("utf-8")


def _pipeline(store, **kwargs):
    kwargs.setdefault("today", TODAY)
    return IngestionPipeline(store, **kwargs)


@pytest.fixture
def report_id(report_store):
    return report_store.create_report("sales.csv", "WILDBERRIES")


def test_successful_run_persists_rows_and_totals(report_store, report_id):
    content = _csv(
        "15.03.2024,WB12345,Футболка хлопковая,1000,2,50",
        "16.03.2024,WB67890,Куртка зимняя,333.33,1,",
        "17.03.2024,WB55555,Кабель USB-C,19.99,7,3",
    )
    result = _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")

    assert result.state == IngestionState.DONE
    assert result.totals.rows_count == 3
    assert result.diagnostics.rows_seen == 3
    assert result.diagnostics.rows_analyzed == 3

    report = report_store.get_report(report_id)
    rows = report_store.list_report_sales(report_id)
    assert report["processed"] is True
    assert len(rows) == 3
    # totals are exact sums over the persisted rows
    assert report["total_revenue"] == sum(r.revenue for r in rows)
    assert report["total_profit"] == sum(r.net_profit for r in rows)
    assert report["total_revenue"] == result.totals.total_revenue
    assert report["profit_margin"] == result.totals.profit_margin

    first = rows[0]
    assert first.sku == "WB12345"
    assert first.net_profit == Decimal("1724.00")
    assert first.profit_margin == Decimal("86.20")
    assert first.raw_commission == Decimal("50")


def test_reprocessing_replaces_rows(report_store, report_id):
    content = _csv(
        "15.03.2024,WB12345,Футболка хлопковая,1000,2,50",
        "16.03.2024,WB67890,Куртка зимняя,2000,1,100",
    )
    pipeline = _pipeline(report_store)
    pipeline.ingest(report_id, content, ".csv", "WILDBERRIES")
    first_rows = report_store.list_report_sales(report_id)
    first_report = report_store.get_report(report_id)

    pipeline.ingest(report_id, content, ".csv", "WILDBERRIES")
    second_rows = report_store.list_report_sales(report_id)
    second_report = report_store.get_report(report_id)

    assert len(second_rows) == 2
    assert second_rows == first_rows
    assert second_report["total_revenue"] == first_report["total_revenue"]
    assert second_report["total_profit"] == first_report["total_profit"]


def test_bad_row_is_dropped_not_fatal(report_store, report_id):
    content = _csv(
        "15.03.2024,WB12345,Футболка хлопковая,1000,2,50",
        "16.03.2024,WB67890,Куртка зимняя,2000,,100",
    )
    result = _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")

    assert result.state == IngestionState.DONE
    assert len(report_store.list_report_sales(report_id)) == 1
    assert result.diagnostics.rows_dropped == 1
    assert result.diagnostics.drop_reasons["missing_quantity"] == 1


def test_zero_survivors_fails_and_marks_unprocessed(report_store, report_id):
    pipeline = _pipeline(report_store)
    pipeline.ingest(report_id, _csv("15.03.2024,WB12345,Футболка хлопковая,1000,2,50"), ".csv", "WILDBERRIES")
    assert report_store.get_report(report_id)["processed"] is True

    content = _csv(
        "15.03.2024,WB12345,Футболка хлопковая,,2,50",
        "16.03.2024,WB67890,Куртка зимняя,2000,0,100",
    )
    with pytest.raises(NoValidRows) as exc:
        pipeline.ingest(report_id, content, ".csv", "WILDBERRIES")

    assert exc.value.diagnostics.rows_seen == 2
    assert report_store.get_report(report_id)["processed"] is False
    # nothing written by the failed run
    assert len(report_store.list_report_sales(report_id)) == 1


def test_merged_line_yields_the_valid_half(report_store, report_id):
    content = _csv("15.03.2024,WB12345,Платье летнее,1000,2,50 16.03.2024,Samsung,Galaxy чехол,500,1,25")
    result = _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")

    rows = report_store.list_report_sales(report_id)
    assert [r.sku for r in rows] == ["WB12345"]
    assert result.diagnostics.lines_split == 1
    assert result.diagnostics.lines_dropped == 1


def test_noise_token_sku_is_dropped(report_store, report_id):
    content = _csv(
        "15.03.2024,WB12345,Футболка хлопковая,1000,2,50",
        "15.03.2024,Xiaomi,Наушники беспроводные,1500,1,75",
    )
    _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")
    assert [r.sku for r in report_store.list_report_sales(report_id)] == ["WB12345"]


def test_unsupported_format_marks_unprocessed(report_store, report_id):
    with pytest.raises(UnsupportedFormat):
        _pipeline(report_store).ingest(report_id, b"whatever", ".pdf", "WILDBERRIES")
    assert report_store.get_report(report_id)["processed"] is False


def test_parallel_and_sequential_runs_agree(report_store, report_id):
    lines = [f"{d:02d}.03.2024,WB{1000 + d},Товар номер {d},{d * 10}.5,{d},1" for d in range(1, 29)]
    content = _csv(*lines)

    sequential = _pipeline(report_store, max_workers=1).ingest(report_id, content, ".csv", "WILDBERRIES")
    parallel = _pipeline(report_store, max_workers=8).ingest(report_id, content, ".csv", "WILDBERRIES")

    assert sequential.totals == parallel.totals
    assert parallel.totals.rows_count == 28


class _FailingStore:
    def __init__(self, exc):
        self.exc = exc
        self.unprocessed = []

    def replace_report_sales(self, report_id, rows):
        raise self.exc

    def mark_unprocessed(self, report_id):
        self.unprocessed.append(report_id)


def test_database_failure_is_wrapped_and_marks_unprocessed():
    store = _FailingStore(OperationalError("INSERT", {}, Exception("disk full")))
    with pytest.raises(PersistenceError):
        _pipeline(store).ingest("r1", _csv("15.03.2024,WB12345,Футболка,1000,2,50"), ".csv", "WILDBERRIES")
    assert store.unprocessed == ["r1"]


def test_missing_report_rolls_back(report_store):
    content = _csv("15.03.2024,WB12345,Футболка хлопковая,1000,2,50")
    with pytest.raises(ReportNotFound):
        _pipeline(report_store).ingest("does-not-exist", content, ".csv", "WILDBERRIES")
    assert report_store.list_report_sales("does-not-exist") == []


def test_run_reads_job_file(report_store, report_id, tmp_path):
    path = tmp_path / f"{report_id}_sales.csv"
    path.write_bytes(_csv("15.03.2024,WB12345,Футболка хлопковая,1000,2,50"))

    job = IngestionJob(report_id=report_id, file_path=str(path), marketplace="wildberries")
    result = _pipeline(report_store).run(job)
    assert result.as_dict()["rows_count"] == 1
    assert result.as_dict()["state"] == "done"

    result = ingest_report_file(report_store, report_id, str(path), "WILDBERRIES", today=TODAY)
    assert result.totals.total_revenue == Decimal("2000.00")


def test_report_analytics_from_store(report_store, report_id):
    content = _csv(
        "15.03.2024,WB12345,Футболка хлопковая,1000,2,50",
        "15.03.2024,WB67890,Куртка зимняя,3000,1,100",
    )
    _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")

    analytics = report_store.get_report_analytics(report_id)
    assert analytics.total_orders == 2
    assert analytics.daily_sales[0].orders == 2
    assert [p.sku for p in analytics.top_products] == ["WB67890", "WB12345"]

    with pytest.raises(ReportNotFound):
        report_store.get_report_analytics("nope")


def test_reports_without_sales(report_store, report_id):
    other = report_store.create_report("other.csv", "OZON")
    _pipeline(report_store).ingest(report_id, _csv("15.03.2024,WB12345,Футболка,1000,2,50"), ".csv", "WILDBERRIES")
    assert [r["id"] for r in report_store.list_reports_without_sales()] == [other]


def test_names_with_escaped_quotes_and_dates_are_ingested(report_store, report_id):
    content = _csv(
        '15.03.2024,WB12345,"Чехол ""Pro"", черный",1000,2,50',
        "15.03.2024,WB67890,Календарь на 01.01.2025,500,1,25",
        '16.03.2024,WB55555,"Календарь настенный 01.01.2025",300,1,10',
    )
    result = _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")

    assert result.totals.rows_count == 3
    assert result.diagnostics.lines_dropped == 0
    names = {r.sku: r.product_name for r in report_store.list_report_sales(report_id)}
    assert names["WB12345"] == 'Чехол "Pro", черный'
    assert names["WB67890"] == "Календарь на 01.01.2025"
    assert result.as_dict()["fee_schedule"] == "2024.1"


def test_unknown_marketplace_marks_unprocessed(report_store, report_id, tmp_path):
    content = _csv("15.03.2024,WB12345,Футболка,1000,2,50")
    _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")
    assert report_store.get_report(report_id)["processed"] is True

    with pytest.raises(InvalidInput):
        _pipeline(report_store).ingest(report_id, content, ".csv", "AMAZON")
    assert report_store.get_report(report_id)["processed"] is False

    path = tmp_path / "sales.csv"
    path.write_bytes(content)
    _pipeline(report_store).ingest(report_id, content, ".csv", "WILDBERRIES")
    with pytest.raises(InvalidInput):
        ingest_report_file(report_store, report_id, str(path), "amazon", today=TODAY)
    assert report_store.get_report(report_id)["processed"] is False


def test_user_analytics_covers_the_users_reports_in_period(report_store):
    now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    recent = report_store.create_report("recent.csv", "WILDBERRIES", user_id="u1", upload_date=now - timedelta(days=2))
    older = report_store.create_report("older.csv", "OZON", user_id="u1", upload_date=now - timedelta(days=60))
    foreign = report_store.create_report("other.csv", "WILDBERRIES", user_id="u2", upload_date=now - timedelta(days=1))

    pipeline = _pipeline(report_store)
    pipeline.ingest(recent, _csv("15.03.2024,WB12345,Футболка хлопковая,1000,2,50"), ".csv", "WILDBERRIES")
    pipeline.ingest(
        older,
        "Дата,Артикул,Название товара,Цена за единицу,Количество\n16.03.2024,OZ-1,Рюкзак,3000,1\n".encode("utf-8"),
        ".csv",
        "OZON",
    )
    pipeline.ingest(foreign, _csv("15.03.2024,WB99999,Куртка,9000,1,50"), ".csv", "WILDBERRIES")

    everything = report_store.get_user_analytics("u1", now=now)
    assert everything.total_orders == 2
    assert everything.total_revenue == Decimal("5000.00")
    assert [p.sku for p in everything.top_products] == ["OZ-1", "WB12345"]
    assert [d.sale_date for d in everything.daily_sales] == [date(2024, 3, 15), date(2024, 3, 16)]

    for period in ("7d", "30d", "unknown"):
        week = report_store.get_user_analytics("u1", period, now=now)
        assert week.total_orders == 1
        assert week.top_products[0].sku == "WB12345"

    assert report_store.get_user_analytics("u1", "90d", now=now).total_orders == 2
    assert report_store.get_user_analytics("nobody").total_orders == 0
