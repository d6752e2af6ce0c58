from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import Workbook

from marketplace_analytics.services.sales_import.decoder import (
    decode_file,
    decode_text,
    detect_delimiter,
    extension_of,
    layout_for_header,
)
from marketplace_analytics.services.sales_import.diagnostics import IngestionDiagnostics
from marketplace_analytics.services.sales_import.errors import UnsupportedFormat

WB_HEADER = "Дата продажи,Артикул WB,Наименование,Цена продажи,Количество,Комиссия WB"


def _xlsx_bytes(rows):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_decode_text_handles_bom_nul_and_line_endings():
    assert decode_text("\ufeffa,b\r\n1,2\x00\r3,4".encode("utf-8")) == "a,b\n1,2\n3,4"


def test_decode_text_falls_back_to_cp1251():
    assert decode_text("Дата;Артикул".encode("cp1251")) == "Дата;Артикул"


def test_detect_delimiter():
    assert detect_delimiter(["a;b;c", "1;2,5;3"]) == ";"
    assert detect_delimiter(["a,b,c", "1,2;3,4"]) == ","
    assert detect_delimiter([]) == ","


def test_layout_for_header():
    layout = layout_for_header(WB_HEADER.split(","), ",")
    assert (layout.date_index, layout.sku_index, layout.name_index) == (0, 1, 2)
    assert layout.min_fields == 5
    assert layout.field_count == 6
    assert layout.dates_per_row == 1
    assert layout.date_anchored

    layout = layout_for_header(["SKU", "Product Name", "Price", "Date", "Quantity", "Дата заказа"], ";")
    assert (layout.date_index, layout.sku_index, layout.name_index) == (3, 0, 1)
    assert layout.dates_per_row == 2
    assert not layout.date_anchored


def test_decode_csv_rows():
    content = "\n".join(
        [
            WB_HEADER,
            "15.03.2024,WB12345,Футболка хлопковая,1000,2,50",
            "",
            '16.03.2024,WB67890,"Кабель, 2 м",350,1,',
        ]
    ).encode("utf-8")
    rows = decode_file(content, ".csv")
    assert rows == [
        {
            "Дата продажи": "15.03.2024",
            "Артикул WB": "WB12345",
            "Наименование": "Футболка хлопковая",
            "Цена продажи": "1000",
            "Количество": "2",
            "Комиссия WB": "50",
        },
        {
            "Дата продажи": "16.03.2024",
            "Артикул WB": "WB67890",
            "Наименование": "Кабель, 2 м",
            "Цена продажи": "350",
            "Количество": "1",
            "Комиссия WB": None,
        },
    ]


def test_decode_csv_semicolon_cp1251():
    text = "Дата;Артикул;Название товара;Цена за единицу;Количество\r\n15.03.2024;OZ-1;Рюкзак;1 234,50;1\r\n"
    rows = decode_file(text.encode("cp1251"), "csv")
    assert rows == [
        {
            "Дата": "15.03.2024",
            "Артикул": "OZ-1",
            "Название товара": "Рюкзак",
            "Цена за единицу": "1 234,50",
            "Количество": "1",
        }
    ]


def test_decode_csv_repairs_merged_and_corrupted_lines():
    diag = IngestionDiagnostics()
    content = "\n".join(
        [
            WB_HEADER,
            "15.03.2024,WB1,Платье,1000,2,50\t16.03.2024\tWB2\tКуртка\t2000\t1\t100",
            "Samsung Galaxy чехол без даты,500",
            "17.03.2024,iPhone,Чехол,500,1,25",
        ]
    ).encode("utf-8")
    rows = decode_file(content, ".csv", diag)
    assert [r["Артикул WB"] for r in rows] == ["WB1", "WB2"]
    assert diag.lines_split == 1
    assert diag.lines_dropped == 2


def test_decode_csv_pads_short_rows():
    content = (WB_HEADER + "\n15.03.2024,WB1,Платье,1000,2\n").encode("utf-8")
    rows = decode_file(content, ".csv")
    assert rows[0]["Комиссия WB"] is None


def test_decode_empty_csv():
    assert decode_file(b"", ".csv") == []
    assert decode_file(WB_HEADER.encode("utf-8"), ".csv") == []


def test_decode_xlsx_first_sheet():
    content = _xlsx_bytes(
        [
            [],
            ["Дата продажи", "Артикул WB", "Наименование", "Цена продажи", "Количество"],
            [datetime(2024, 3, 15), 123456, "Футболка", 999.5, 2],
            [None, None, None, None, None],
            ["16.03.2024", "WB2", "Куртка", 2000, 1],
        ]
    )
    rows = decode_file(content, ".XLSX")
    assert len(rows) == 2
    assert rows[0]["Дата продажи"] == datetime(2024, 3, 15)
    assert rows[0]["Артикул WB"] == 123456
    assert rows[1]["Наименование"] == "Куртка"


@pytest.mark.parametrize("extension", [".txt", ".pdf", "", ".csv.gz"])
def test_unsupported_format(extension):
    with pytest.raises(UnsupportedFormat):
        decode_file(b"a,b\n1,2", extension)


def test_extension_of():
    assert extension_of("/uploads/abc_Report.XLSX") == ".xlsx"
    assert extension_of("report") == ""


def test_decode_csv_reads_escaped_quotes_in_names():
    content = "\n".join([WB_HEADER, '15.03.2024,WB12345,"Чехол ""Pro"", черный",1000,2,50']).encode("utf-8")
    rows = decode_file(content, ".csv")
    assert rows == [
        {
            "Дата продажи": "15.03.2024",
            "Артикул WB": "WB12345",
            "Наименование": 'Чехол "Pro", черный',
            "Цена продажи": "1000",
            "Количество": "2",
            "Комиссия WB": "50",
        }
    ]


def test_decode_csv_keeps_names_that_contain_a_date():
    diag = IngestionDiagnostics()
    content = "\n".join(
        [
            WB_HEADER,
            "15.03.2024,WB12345,Календарь на 01.01.2025,1000,2,50",
            '16.03.2024,WB67890,"Календарь настенный 01.01.2025",500,1,25',
        ]
    ).encode("utf-8")
    rows = decode_file(content, ".csv", diag)
    assert [r["Наименование"] for r in rows] == ["Календарь на 01.01.2025", "Календарь настенный 01.01.2025"]
    assert [r["Цена продажи"] for r in rows] == ["1000", "500"]
    assert diag.lines_dropped == 0
