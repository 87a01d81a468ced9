"""还款计划导出：CSV（Excel 可直接打开）与 xlsx。"""

from __future__ import annotations

from io import BytesIO, StringIO
from typing import List
import csv

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from mortgage_planner.calculator import AmortizationResult, ScheduleRow


# Excel 依赖 BOM 识别 UTF-8
CSV_BOM = "\ufeff"


def _headers(include_components: bool) -> List[str]:
    headers = ["期数", "月供(元)", "本金(元)", "利息(元)", "剩余本金(元)"]
    if include_components:
        # 组合贷：拆分列插在“月供”之后
        headers[2:2] = ["商贷月供(元)", "公积金月供(元)"]
    return headers


def _row_values(row: ScheduleRow, include_components: bool) -> list:
    values = [
        row.month_index,
        round(row.payment, 2),
        round(row.principal, 2),
        round(row.interest, 2),
        round(row.balance, 2),
    ]
    if include_components:
        values[2:2] = [
            round(row.commercial_payment or 0.0, 2),
            round(row.provident_payment or 0.0, 2),
        ]
    return values


def schedule_to_csv(result: AmortizationResult, include_components: bool = False) -> str:
    """导出 CSV 文本：期数, 月供, [商贷月供, 公积金月供], 本金, 利息, 剩余本金。"""
    buf = StringIO()
    buf.write(CSV_BOM)
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(_headers(include_components))
    for row in result.schedule:
        values = _row_values(row, include_components)
        writer.writerow([values[0]] + [f"{v:.2f}" for v in values[1:]])
    return buf.getvalue()


def schedule_to_xlsx(result: AmortizationResult, include_components: bool = False) -> bytes:
    """导出 xlsx，额外带一列“利息占比”，利息占比 < 50% 标红。"""
    wb = Workbook()
    ws = wb.active
    ws.title = "Schedule"

    headers = _headers(include_components) + ["利息占比"]
    ws.append(headers)

    header_font = Font(bold=True, name="Arial", size=11, color="FFFFFF")
    body_font = Font(name="Arial", size=10)
    header_fill = PatternFill("solid", fgColor="0F172A")
    header_fill_commercial = PatternFill("solid", fgColor="1D4ED8")
    header_fill_fund = PatternFill("solid", fgColor="047857")
    alt_fill = PatternFill("solid", fgColor="F8FAFC")
    border = Border(bottom=Side(style="thin", color="E2E8F0"))
    align_right = Alignment(horizontal="right")
    align_center = Alignment(horizontal="center")

    for cell in ws[1]:
        cell.font = header_font
        cell.alignment = align_center
        if cell.value.startswith("商贷"):
            cell.fill = header_fill_commercial
        elif cell.value.startswith("公积金"):
            cell.fill = header_fill_fund
        else:
            cell.fill = header_fill

    ratio_col = len(headers)
    for idx, row in enumerate(result.schedule, start=2):
        ratio = (row.interest / row.payment) if row.payment else 0.0
        ws.append(_row_values(row, include_components) + [f"{ratio * 100:.2f}%"])
        for col_idx in range(1, ratio_col + 1):
            cell = ws.cell(row=idx, column=col_idx)
            cell.font = body_font
            cell.alignment = align_right if col_idx > 1 else align_center
            if idx % 2 == 0:
                cell.fill = alt_fill
            cell.border = border
        if ratio < 0.5:
            ws.cell(row=idx, column=ratio_col).font = Font(name="Arial", size=10, color="EF4444")

    for i in range(1, ratio_col + 1):
        ws.column_dimensions[get_column_letter(i)].width = 8 if i == 1 else 14

    buf = BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()
