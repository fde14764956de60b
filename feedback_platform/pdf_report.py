"""Feedback and aggregate report PDFs (ReportLab Platypus)."""

import logging
import re
from datetime import date as date_type
from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.graphics.shapes import Drawing, Rect
from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen.canvas import Canvas
from reportlab.platypus import (
    CondPageBreak,
    HRFlowable,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from feedback_platform.scoring import (
    MAX_CRITERION_SCORE,
    finite_or_zero,
    format_date,
    percentage_color,
    score_level,
    score_percentage,
    summarize_assessments,
)

logger = logging.getLogger(__name__)

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 14 * mm
CONTENT_WIDTH = PAGE_WIDTH - 2 * MARGIN
TOP_MARGIN = 20 * mm
BOTTOM_MARGIN = 20 * mm
HEADER_HEIGHT = 15 * mm
# A new page starts once less than this is left below the cursor
PAGE_BREAK_ROOM = 27 * mm

PLATFORM_NAME = "Assessment Feedback Platform"


def _rgb(red, green, blue):
    return colors.Color(red / 255.0, green / 255.0, blue / 255.0)


BRAND_BLUE = _rgb(41, 128, 185)
RULE_GREY = _rgb(220, 220, 220)
BAR_GREY = _rgb(220, 220, 220)
DESCRIPTION_GREY = _rgb(100, 100, 100)
FEEDBACK_HEAD_BG = _rgb(245, 245, 245)
FEEDBACK_HEAD_TEXT = _rgb(80, 80, 80)
FOOTER_GREY = _rgb(150, 150, 150)


def _build_styles():
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("ReportTitle", parent=base["Title"], fontSize=20, leading=24,
                                alignment=0, spaceAfter=6),
        "section": ParagraphStyle("Section", parent=base["Heading2"], fontSize=14, leading=17,
                                  spaceBefore=10, spaceAfter=2),
        "body": ParagraphStyle("Body", parent=base["Normal"], fontSize=10, leading=13),
        "meta": ParagraphStyle("Meta", parent=base["Normal"], fontSize=10, leading=14),
        "label": ParagraphStyle("Label", parent=base["Normal"], fontSize=10, leading=13,
                                fontName="Helvetica-Bold"),
        "caption": ParagraphStyle("Caption", parent=base["Normal"], fontSize=12, leading=15,
                                  alignment=TA_RIGHT),
        "criterion": ParagraphStyle("Criterion", parent=base["Normal"], fontSize=11, leading=14,
                                    fontName="Helvetica-Bold", textColor=colors.white),
        "criterion_score": ParagraphStyle("CriterionScore", parent=base["Normal"], fontSize=11,
                                          leading=14, fontName="Helvetica-Bold",
                                          textColor=colors.white, alignment=TA_RIGHT),
        "description": ParagraphStyle("Description", parent=base["Normal"], fontSize=9, leading=12,
                                      textColor=DESCRIPTION_GREY),
        "feedback_head": ParagraphStyle("FeedbackHead", parent=base["Normal"], fontSize=10,
                                        leading=13, fontName="Helvetica-Bold",
                                        textColor=FEEDBACK_HEAD_TEXT),
        "cell": ParagraphStyle("Cell", parent=base["Normal"], fontSize=9, leading=11),
        "cell_head": ParagraphStyle("CellHead", parent=base["Normal"], fontSize=9, leading=11,
                                    fontName="Helvetica-Bold", textColor=colors.white),
    }


def _text(value):
    return escape(str(value if value is not None else "")).replace("\n", "<br/>")


def _number(value):
    return f"{value:g}"


def _numbered_canvas(footer, font_size, color, y):
    # Footers are drawn in save(), once the page count is known
    class NumberedCanvas(Canvas):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self._saved_page_states = []

        def showPage(self):
            self._saved_page_states.append(dict(self.__dict__))
            self._startPage()

        def save(self):
            page_count = len(self._saved_page_states)
            for page, state in enumerate(self._saved_page_states, start=1):
                self.__dict__.update(state)
                self.saveState()
                self.setFont("Helvetica", font_size)
                self.setFillColor(color)
                self.drawCentredString(PAGE_WIDTH / 2.0, y, footer(page, page_count))
                self.restoreState()
                super().showPage()
            super().save()

    return NumberedCanvas


def _document(buffer, title):
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=MARGIN,
        rightMargin=MARGIN,
        topMargin=TOP_MARGIN,
        bottomMargin=BOTTOM_MARGIN,
    )
    doc.title = title
    doc.author = PLATFORM_NAME
    return doc


def _section(title, styles):
    return [
        Paragraph(_text(title), styles["section"]),
        HRFlowable(width="100%", thickness=0.5, color=RULE_GREY, spaceBefore=1, spaceAfter=6),
    ]


def _score_bar(percentage, fill):
    bar_height = 8 * mm
    drawing = Drawing(CONTENT_WIDTH, bar_height)
    drawing.add(Rect(0, 0, CONTENT_WIDTH, bar_height, fillColor=BAR_GREY, strokeColor=None))
    fill_width = CONTENT_WIDTH * min(max(percentage, 0), 100) / 100.0
    if fill_width > 0:
        drawing.add(Rect(0, 0, fill_width, bar_height, fillColor=_rgb(*fill), strokeColor=None))
    return drawing


def _criterion_flowables(index, criterion, fill, styles):
    score = finite_or_zero(criterion.get("score"))
    title = Table(
        [[
            Paragraph(_text(f"{index}. {criterion.get('name', '')}"), styles["criterion"]),
            Paragraph(_text(f"{_number(score)}/5 - {score_level(score)}"), styles["criterion_score"]),
        ]],
        colWidths=[CONTENT_WIDTH * 0.6, CONTENT_WIDTH * 0.4],
    )
    title.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, -1), _rgb(*fill)),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
    ]))
    flowables = [CondPageBreak(PAGE_BREAK_ROOM), title]

    description = criterion.get("description")
    if description:
        block = Table([[Paragraph(_text(description), styles["description"])]], colWidths=[CONTENT_WIDTH])
        block.setStyle(TableStyle([("TOPPADDING", (0, 0), (-1, -1), 4),
                                   ("BOTTOMPADDING", (0, 0), (-1, -1), 4)]))
        flowables.append(block)

    feedback = criterion.get("feedback") or ""
    if feedback.strip():
        block = Table(
            [[Paragraph("Feedback", styles["feedback_head"])],
             [Paragraph(_text(feedback), styles["body"])]],
            colWidths=[CONTENT_WIDTH],
        )
        block.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), FEEDBACK_HEAD_BG),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]))
        flowables.append(block)

    flowables.append(Spacer(1, 10 * mm))
    return flowables


def build_feedback_pdf(*, student_name, assessor_name, task_name, criteria, total_score,
                       date=None, overall_feedback="", generated_on=None):
    """``criteria``: dicts with ``name``, ``score`` and optional ``description`` and ``feedback``."""
    styles = _build_styles()
    generated_on = generated_on or date_type.today()

    max_total = len(criteria) * MAX_CRITERION_SCORE
    total = finite_or_zero(total_score)
    percentage = score_percentage(total, max_total)
    fill = percentage_color(percentage)

    story = []
    story.extend(_section("Assessment Details", styles))
    details = Table(
        [
            [Paragraph("Student:", styles["label"]), Paragraph(_text(student_name), styles["body"])],
            [Paragraph("Task:", styles["label"]), Paragraph(_text(task_name), styles["body"])],
            [Paragraph("Assessor:", styles["label"]), Paragraph(_text(assessor_name), styles["body"])],
            [Paragraph("Date:", styles["label"]), Paragraph(_text(format_date(date or generated_on)), styles["body"])],
        ],
        colWidths=[30 * mm, CONTENT_WIDTH - 30 * mm],
    )
    details.setStyle(TableStyle([
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ("LEFTPADDING", (0, 0), (-1, -1), 2),
    ]))
    story.append(details)

    story.extend(_section("Score Summary", styles))
    story.append(_score_bar(percentage, fill))
    story.append(Spacer(1, 3 * mm))
    story.append(Paragraph(f"{total:.1f} / {max_total} ({percentage}%)", styles["caption"]))

    if criteria:
        story.extend(_section("Detailed Criterion Feedback", styles))
        for index, criterion in enumerate(criteria, start=1):
            story.extend(_criterion_flowables(index, criterion, fill, styles))

    if overall_feedback and overall_feedback.strip():
        story.append(CondPageBreak(PAGE_BREAK_ROOM))
        story.extend(_section("Overall Feedback", styles))
        block = Table([[Paragraph(_text(overall_feedback), styles["body"])]], colWidths=[CONTENT_WIDTH])
        block.setStyle(TableStyle([("TOPPADDING", (0, 0), (-1, -1), 5),
                                   ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
                                   ("LEFTPADDING", (0, 0), (-1, -1), 5)]))
        story.append(block)

    def draw_header(canvas, _doc):
        canvas.saveState()
        canvas.setFillColor(BRAND_BLUE)
        canvas.rect(0, PAGE_HEIGHT - HEADER_HEIGHT, PAGE_WIDTH, HEADER_HEIGHT, stroke=0, fill=1)
        canvas.setFillColor(colors.white)
        canvas.setFont("Helvetica", 18)
        canvas.drawCentredString(PAGE_WIDTH / 2.0, PAGE_HEIGHT - 10 * mm, "Assessment Feedback Report")
        canvas.restoreState()

    generated_label = format_date(generated_on)
    canvasmaker = _numbered_canvas(
        lambda page, count: f"{PLATFORM_NAME} | Generated on {generated_label} | Page {page} of {count}",
        font_size=9,
        color=FOOTER_GREY,
        y=PAGE_HEIGHT - 285 * mm,
    )

    buffer = BytesIO()
    doc = _document(buffer, f"Assessment Feedback - {student_name}")
    doc.build(story, onFirstPage=draw_header, canvasmaker=canvasmaker)
    logger.debug("Rendered feedback PDF for %s (%d criteria)", student_name, len(criteria))
    return buffer.getvalue()


def _relation_name(record, relation):
    related = record.get(relation) or {}
    if relation == "task":
        return related.get("name") or "Unknown"
    return (related.get("user") or {}).get("fullName") or "Unknown"


def _max_total(record):
    rubric = (record.get("task") or {}).get("rubricTemplate") or {}
    criteria = rubric.get("criteria") or []
    return len(criteria) * MAX_CRITERION_SCORE


def _detail_row(record):
    completed = record.get("status") == "completed"
    if completed:
        total = finite_or_zero(record.get("totalScore"))
        max_total = _max_total(record)
        score = f"{total:.1f}/{max_total}" if max_total else f"{total:.1f}"
    else:
        score = "N/A"
    updated = record.get("updatedAt")
    return [
        _relation_name(record, "student"),
        _relation_name(record, "task"),
        _relation_name(record, "assessor"),
        "Completed" if completed else "Draft",
        score,
        format_date(updated) if updated else "N/A",
    ]


def _grid(rows, col_widths, styles):
    head, body = rows[0], rows[1:]
    data = [[Paragraph(_text(cell), styles["cell_head"]) for cell in head]]
    data.extend([Paragraph(_text(cell), styles["cell"]) for cell in row] for row in body)
    table = Table(data, colWidths=col_widths, repeatRows=1)
    commands = [
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_BLUE),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    for row_index in range(2, len(data), 2):
        commands.append(("BACKGROUND", (0, row_index), (-1, row_index), FEEDBACK_HEAD_BG))
    table.setStyle(TableStyle(commands))
    return table


def report_filename(title, generated_on=None):
    generated_on = generated_on or date_type.today()
    stem = re.sub(r"\s+", "_", title)
    return f"{stem}_{generated_on.isoformat()}.pdf"


def build_summary_report(records, *, title="Comprehensive Assessment Report", period="all time",
                         school_filter="all", class_filter="all", generated_on=None):
    """Render the aggregate report; returns ``(filename, pdf_bytes)``."""
    styles = _build_styles()
    generated_on = generated_on or date_type.today()
    summary = summarize_assessments(records)

    story = [
        Paragraph(_text(title), styles["title"]),
        Paragraph(_text(f"Generated on: {format_date(generated_on)}"), styles["meta"]),
        Paragraph(_text(f"Period: {period}"), styles["meta"]),
        Paragraph(_text(f"School Filter: {school_filter}"), styles["meta"]),
        Paragraph(_text(f"Class Filter: {class_filter}"), styles["meta"]),
        Spacer(1, 4 * mm),
    ]

    story.extend(_section("Assessment Summary", styles))
    story.append(_grid(
        [
            ["Metric", "Value"],
            ["Total Assessments", str(summary["total"])],
            ["Completed Assessments", str(summary["completed"])],
            ["Completion Rate", f"{summary['completion_rate']}%"],
            ["Average Score", f"{summary['average_score']:.2f}"],
        ],
        [CONTENT_WIDTH * 0.6, CONTENT_WIDTH * 0.4],
        styles,
    ))
    story.append(Spacer(1, 6 * mm))

    story.extend(_section("Assessment Details", styles))
    rows = [["Student", "Task", "Assessor", "Status", "Score", "Last Updated"]]
    rows.extend(_detail_row(record) for record in records)
    widths = [0.2, 0.22, 0.18, 0.12, 0.12, 0.16]
    story.append(_grid(rows, [CONTENT_WIDTH * w for w in widths], styles))

    canvasmaker = _numbered_canvas(
        lambda page, count: f"Page {page} of {count}",
        font_size=10,
        color=colors.black,
        y=10 * mm,
    )

    buffer = BytesIO()
    doc = _document(buffer, title)
    doc.build(story, canvasmaker=canvasmaker)
    logger.info("Rendered summary report with %d assessments", summary["total"])
    return report_filename(title, generated_on), buffer.getvalue()
