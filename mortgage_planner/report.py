from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Optional, Tuple

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import (
    SimpleDocTemplate,
    Paragraph,
    Spacer,
    Table,
    TableStyle,
    PageBreak,
    Flowable,
)

from mortgage_planner.calculator import LOAN_COMMERCIAL, METHOD_EQUAL_PRINCIPAL, aggregate_interest_by_year
from mortgage_planner.prepayment import ACTION_REDUCE, ACTION_SHORTEN, LoanPart, PrepaymentResult


FONT_NAME = "STSong-Light"
NUM_FONT = "Helvetica"  # 数字/英文使用西文字体，避免拥挤
pdfmetrics.registerFont(UnicodeCIDFont(FONT_NAME))

PALETTE = {
    "primary_text": "#1E293B",
    "secondary_text": "#64748B",
    "accent_green": "#10B981",
    "accent_blue": "#3B82F6",
    "highlight_bg": "#F1F5F9",
    "border": "#E2E8F0",
    "white": "#FFFFFF",
    "dark_header": "#0F172A",
}

ACTION_LABELS = {
    ACTION_SHORTEN: "缩短年限（月供不变）",
    ACTION_REDUCE: "减少月供（期限不变）",
}


def _method_cn(method: str) -> str:
    return "等额本金" if method == METHOD_EQUAL_PRINCIPAL else "等额本息"


def _target_cn(target: str) -> str:
    return "商业贷款" if target == LOAN_COMMERCIAL else "公积金贷款"


def _fmt_money_font(v: float) -> str:
    return f"<font name='{FONT_NAME}'>￥</font><font name='{NUM_FONT}'>{v:,.2f}</font>"


def _fmt_percent_font(v: float) -> str:
    return f"<font name='{NUM_FONT}'>{v:.2f}%</font>"


def _months_to_years_months(m: int) -> Tuple[int, int]:
    return m // 12, m % 12


def _invest_gain(amount: float, annual_rate_pct: float, years: int) -> float:
    # 理财收益（按年复利近似）
    return amount * ((1.0 + annual_rate_pct / 100.0) ** years) - amount


def score_label(saved: float, prepay_amount: float) -> str:
    """按“每还 1 元省下多少利息”评价本次提前还款。"""
    if prepay_amount <= 0:
        return "谨慎执行（资金利用率低）"
    ratio = saved / prepay_amount
    if ratio >= 0.5:
        return "建议执行（省钱效率极高）"
    if ratio >= 0.2:
        return "建议执行（省钱效率较高）"
    if ratio >= 0.1:
        return "可考虑（收益一般）"
    return "谨慎执行（资金利用率低）"


class PageRule(Flowable):
    """一条水平分割线。"""

    def __init__(self, width, height=0):
        super().__init__()
        self.width = width
        self.height = height

    def draw(self):
        self.canv.setStrokeColor(colors.HexColor(PALETTE["border"]))
        self.canv.setLineWidth(0.4)
        self.canv.line(0, self.height, self.width, self.height)


def _header_footer(canvas, doc):
    canvas.saveState()
    canvas.setFont(FONT_NAME, 9)
    canvas.setFillColor(colors.HexColor(PALETTE["secondary_text"]))
    canvas.setStrokeColor(colors.HexColor(PALETTE["border"]))
    canvas.setLineWidth(0.4)
    top = doc.height + doc.topMargin
    canvas.line(doc.leftMargin, top - 9 * mm, doc.width + doc.leftMargin, top - 9 * mm)
    canvas.drawString(doc.leftMargin, top - 7 * mm, "房贷提前还款分析")

    canvas.setFont(FONT_NAME, 8)
    canvas.drawString(doc.leftMargin, 10 * mm, f"生成日期: {date.today().strftime('%Y-%m-%d')}")
    canvas.drawRightString(doc.width + doc.leftMargin, 10 * mm, f"第 {doc.page} 页")
    canvas.restoreState()


def generate_pdf(
    *,
    result: PrepaymentResult,
    part: LoanPart,
    invest_annual_rate: Optional[float] = None,
) -> bytes:
    """根据提前还款结果生成 PDF 报告，返回二进制内容。

    part 为被调整那一笔贷款的原始参数（用户输入），首页信息卡以它为准。
    """
    styles = getSampleStyleSheet()
    base_style = ParagraphStyle(
        "base_cn",
        parent=styles["BodyText"],
        fontName=FONT_NAME,
        fontSize=10.2,
        leading=19,
        wordWrap="CJK",
        textColor=colors.HexColor(PALETTE["primary_text"]),
    )
    meta_style = ParagraphStyle(
        "meta_cn",
        parent=base_style,
        fontSize=9.5,
        leading=14.5,
        textColor=colors.HexColor(PALETTE["secondary_text"]),
    )
    title_style = ParagraphStyle(
        "title_cn",
        parent=styles["Title"],
        fontName=FONT_NAME,
        fontSize=25,
        leading=33,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceAfter=10,
    )
    h2_style = ParagraphStyle(
        "h2_cn",
        parent=styles["Heading2"],
        fontName=FONT_NAME,
        fontSize=16.5,
        leading=23,
        textColor=colors.HexColor(PALETTE["primary_text"]),
        spaceBefore=8,
        spaceAfter=8,
    )
    big_green_style = ParagraphStyle(
        "big_green",
        parent=styles["Title"],
        fontName=NUM_FONT,
        fontSize=40,
        leading=48,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        alignment=1,
    )
    tag_style = ParagraphStyle(
        "tag",
        parent=base_style,
        fontSize=12,
        leading=16,
        textColor=colors.HexColor(PALETTE["accent_green"]),
        backColor=colors.HexColor("#ECFDF3"),
        borderPadding=7,
        alignment=1,
        spaceAfter=8,
    )

    buf = BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=32 * mm,
        bottomMargin=22 * mm,
        title="房贷提前还款分析报告",
    )

    story = []

    # -------------------- 第 1 页：核心摘要 --------------------
    story.append(Spacer(1, 3 * mm))
    story.append(Paragraph("<b>提前还款分析</b>", title_style))
    story.append(Paragraph(f"生成日期：{date.today().strftime('%Y-%m-%d')}", meta_style))
    story.append(PageRule(doc.width))
    story.append(Spacer(1, 6 * mm))

    info_style = ParagraphStyle("info_cn", parent=base_style, leading=17)
    info_data = [
        ["调整贷款", "本次提前还款"],
        [
            Paragraph(
                f"贷款：{_target_cn(result.target)}<br/>"
                f"剩余本金：{_fmt_money_font(part.principal)}<br/>"
                f"年利率：{_fmt_percent_font(part.annual_rate)}<br/>"
                f"剩余期数：{part.term_months} 期<br/>"
                f"还款方式：{_method_cn(part.method)}",
                info_style,
            ),
            Paragraph(
                f"提前还款金额：{_fmt_money_font(result.prepay_amount)}<br/>"
                f"方案：{ACTION_LABELS.get(result.action, result.action)}<br/>"
                f"理财年化（可选）：{_fmt_percent_font(invest_annual_rate) if invest_annual_rate is not None else '未填写'}",
                info_style,
            ),
        ],
    ]
    info_table = Table(info_data, colWidths=[85 * mm, 85 * mm])
    info_table.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, -1), FONT_NAME, 9.7),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(PALETTE["highlight_bg"])),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["secondary_text"])),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("BOX", (0, 0), (-1, -1), 0.8, colors.HexColor(PALETTE["border"])),
                ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.HexColor(PALETTE["border"])),
                ("PADDING", (0, 0), (-1, -1), 10),
            ]
        )
    )
    story.append(info_table)
    story.append(Spacer(1, 6 * mm))

    story.append(Paragraph("本次还款预计为您节省", ParagraphStyle(name="saving_title_cn", parent=base_style, alignment=1, fontSize=11)))
    story.append(Paragraph(_fmt_money_font(result.saved_interest), big_green_style))
    story.append(Paragraph(score_label(result.saved_interest, result.prepay_amount), tag_style))

    saved_years, saved_left_months = _months_to_years_months(result.saved_months)
    compare_data = [
        ["项目", "调整前", "调整后"],
        ["首月月供（合计）", f"{result.old_monthly_payment:,.2f}", f"{result.new_monthly_payment:,.2f}"],
        ["剩余总利息（合计）", f"{result.old_total_interest:,.2f}", f"{result.new_total_interest:,.2f}"],
        ["调整贷款期数", f"{part.term_months}", f"{result.new_term_months}"],
    ]
    compare_table = Table(compare_data, colWidths=[60 * mm, 55 * mm, 55 * mm])
    compare_table.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, -1), FONT_NAME, 10.2),
                ("FONT", (1, 1), (-1, -1), NUM_FONT, 10.2),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(PALETTE["dark_header"])),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.HexColor(PALETTE["white"])),
                ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.HexColor("#FFFFFF"), colors.HexColor(PALETTE["highlight_bg"])]),
                ("PADDING", (0, 0), (-1, -1), 9),
            ]
        )
    )
    story.append(Spacer(1, 5 * mm))
    story.append(compare_table)

    if result.action == ACTION_SHORTEN and result.saved_months > 0:
        story.append(Spacer(1, 4 * mm))
        story.append(Paragraph(f"月供不变，预计提前 {saved_years} 年 {saved_left_months} 个月结清。", base_style))

    story.append(PageBreak())

    # -------------------- 第 2 页：年度利息 & 理财对比 --------------------
    story.append(Paragraph("年度利息对比", h2_style))
    story.append(PageRule(doc.width))
    old_by_year = aggregate_interest_by_year(result.old_schedule.schedule)
    new_by_year = aggregate_interest_by_year(result.new_schedule.schedule)
    year_rows = [["贷款年度", "调整前利息", "调整后利息"]]
    for year in sorted(old_by_year):
        year_rows.append([f"第 {year} 年", f"{old_by_year[year]:,.2f}", f"{new_by_year.get(year, 0.0):,.2f}"])
    year_table = Table(year_rows, colWidths=[40 * mm, 65 * mm, 65 * mm], repeatRows=1)
    year_table.setStyle(
        TableStyle(
            [
                ("FONT", (0, 0), (-1, -1), FONT_NAME, 9.5),
                ("FONT", (1, 1), (-1, -1), NUM_FONT, 9.5),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(PALETTE["highlight_bg"])),
                ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
                ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor(PALETTE["border"])),
            ]
        )
    )
    story.append(year_table)
    story.append(Spacer(1, 8 * mm))

    if invest_annual_rate is not None and result.prepay_amount > 0:
        years = max(1, part.term_months // 12)
        invest_gain = _invest_gain(result.prepay_amount, invest_annual_rate, years)
        diff = result.saved_interest - invest_gain
        story.append(Paragraph("理财对比", h2_style))
        story.append(
            Paragraph(
                f"假设不提前还款，将 {_fmt_money_font(result.prepay_amount)} 投入年化 {_fmt_percent_font(invest_annual_rate)} 的理财，"
                f"{years} 年后预计收益约 {_fmt_money_font(invest_gain)}。",
                base_style,
            )
        )
        if diff >= 0:
            conclusion = f"<font color='{PALETTE['accent_green']}'>还贷比理财多省约 {_fmt_money_font(diff)}</font>"
        else:
            conclusion = f"<font color='{PALETTE['accent_blue']}'>理财比还贷多赚约 {_fmt_money_font(-diff)}</font>"
        story.append(Paragraph(f"<b>结论：{conclusion}</b>", base_style))

    story.append(Spacer(1, 12 * mm))
    story.append(
        Paragraph(
            "<b>免责声明：</b>本报告基于您提供的数据进行数学模拟，结果仅供参考。实际还款规则可能受银行计息方式、扣款日、"
            "提前还款手续费等多种因素影响，请以银行出具的还款计划表为准。",
            ParagraphStyle("disclaimer", parent=base_style, fontSize=8.5, leading=14, textColor=colors.HexColor(PALETTE["secondary_text"])),
        )
    )

    doc.build(story, onFirstPage=_header_footer, onLaterPages=_header_footer)
    return buf.getvalue()
