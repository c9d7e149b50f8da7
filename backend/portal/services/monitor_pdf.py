"""Render the check-in monitor snapshot as a PDF report."""
import io
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_RIGHT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle,
)

HEADER_BG = colors.HexColor('#1e293b')
ROW_ALT = colors.HexColor('#f1f5f9')
GRID = colors.HexColor('#cbd5e1')


def _fmt_ts(value) -> str:
    if not value:
        return "-"
    return str(value).replace("T", " ")[:19] + " UTC"


def _cell(text, styles) -> Paragraph:
    return Paragraph(escape(str(text if text not in (None, "") else "-")), styles['TableCell'])


def _data_table(header, rows, col_widths, styles) -> Table:
    data = [header] + [[_cell(v, styles) for v in row] for row in rows]
    table = Table(data, colWidths=col_widths, repeatRows=1)
    style = [
        ('BACKGROUND', (0, 0), (-1, 0), HEADER_BG),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, 0), 8),
        ('GRID', (0, 0), (-1, -1), 0.25, GRID),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('TOPPADDING', (0, 0), (-1, -1), 3),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 3),
    ]
    for i in range(2, len(data), 2):
        style.append(('BACKGROUND', (0, i), (-1, i), ROW_ALT))
    table.setStyle(TableStyle(style))
    return table


def _signature_text(row) -> str:
    if row.get("signature_type") == "typed" and row.get("signature_data"):
        return row["signature_data"]
    if row.get("signature_type") == "drawn":
        return "(drawn signature on file)"
    return "-"


def generate_monitor_pdf(snapshot: dict) -> bytes:
    """Build a PDF from ``build_monitor_snapshot`` output."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=0.5 * inch,
        leftMargin=0.5 * inch,
        topMargin=0.5 * inch,
        bottomMargin=0.5 * inch,
        title="Check-In Monitor",
    )

    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        name='ReportTitle',
        parent=styles['Heading1'],
        fontSize=18,
        textColor=colors.HexColor('#1e293b'),
        spaceAfter=2,
    ))
    styles.add(ParagraphStyle(
        name='SectionHeader',
        parent=styles['Heading3'],
        fontSize=11,
        textColor=colors.HexColor('#1e293b'),
        spaceBefore=10,
        spaceAfter=4,
    ))
    styles.add(ParagraphStyle(
        name='SmallRight',
        parent=styles['Normal'],
        fontSize=8,
        alignment=TA_RIGHT,
        textColor=colors.HexColor('#64748b'),
    ))
    styles.add(ParagraphStyle(
        name='TableCell',
        parent=styles['Normal'],
        fontSize=7.5,
        leading=9,
    ))
    styles.add(ParagraphStyle(
        name='Empty',
        parent=styles['Normal'],
        fontSize=8.5,
        textColor=colors.HexColor('#64748b'),
    ))

    story = []
    summary = snapshot.get("summary", {})

    # ── Header ────────────────────────────────────────────────────
    story.append(Paragraph("Check-In Monitor", styles['ReportTitle']))
    story.append(Paragraph(f"Generated {_fmt_ts(snapshot.get('timestamp'))}", styles['SmallRight']))
    story.append(HRFlowable(width="100%", thickness=1, color=HEADER_BG))
    story.append(Spacer(1, 8))

    # ── Summary ───────────────────────────────────────────────────
    sum_rows = [
        ["Active Kiosks", str(summary.get("total_active_kiosks", 0)),
         "Checked In", str(summary.get("total_checked_in", 0))],
        ["Active Events", str(summary.get("total_active_events", 0)),
         "Attestations (24h)", str(summary.get("total_attestations_today", 0))],
    ]
    sum_table = Table(sum_rows, colWidths=[1.6 * inch, 1.2 * inch, 1.6 * inch, 1.2 * inch])
    sum_table.setStyle(TableStyle([
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTNAME', (2, 0), (2, -1), 'Helvetica-Bold'),
        ('BOX', (0, 0), (-1, -1), 0.5, GRID),
        ('BACKGROUND', (0, 0), (-1, -1), ROW_ALT),
        ('TOPPADDING', (0, 0), (-1, -1), 4),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 4),
    ]))
    story.append(sum_table)

    def section(title, header, rows, widths, empty_text):
        story.append(Paragraph(title, styles['SectionHeader']))
        if rows:
            story.append(_data_table(header, rows, widths, styles))
        else:
            story.append(Paragraph(empty_text, styles['Empty']))

    # ── Kiosks ────────────────────────────────────────────────────
    section(
        "Active Kiosks",
        ["IP Address", "Operator", "Event", "Last Seen"],
        [
            [k["ip_address"], k["operator_name"], k.get("event_id"), _fmt_ts(k["last_seen"])]
            for k in snapshot.get("active_kiosks", [])
        ],
        [1.6 * inch, 2.4 * inch, 1.0 * inch, 2.5 * inch],
        "No kiosks reported in the last minute.",
    )

    # ── Events ────────────────────────────────────────────────────
    section(
        "Active Events",
        ["Event", "Venue", "Date", "Hours", "Checked In"],
        [
            [
                e["name"],
                ", ".join(p for p in (e.get("venue"), e.get("city"), e.get("state")) if p),
                e["date"],
                f"{e.get('start_time') or '-'} - {e.get('end_time') or '-'}",
                e["checked_in_count"],
            ]
            for e in snapshot.get("active_events", [])
        ],
        [2.0 * inch, 2.2 * inch, 0.9 * inch, 1.4 * inch, 1.0 * inch],
        "No active events today.",
    )

    # ── Workers on the clock ──────────────────────────────────────
    section(
        "Checked-In Workers",
        ["Name", "Event", "Division", "Clocked In"],
        [
            [u["name"], u.get("event_name"), u.get("division"), _fmt_ts(u["clocked_in_at"])]
            for u in snapshot.get("checked_in_users", [])
        ],
        [2.2 * inch, 2.3 * inch, 1.0 * inch, 2.0 * inch],
        "Nobody is clocked in.",
    )

    # ── Attestations ──────────────────────────────────────────────
    section(
        "Clock-Out Attestations (last 24 hours)",
        ["Name", "Signed At", "IP Address", "Valid", "Signature"],
        [
            [
                a["name"],
                _fmt_ts(a["signed_at"]),
                a.get("ip_address"),
                "Yes" if a.get("is_valid") else "No",
                _signature_text(a),
            ]
            for a in snapshot.get("attestations", [])
        ],
        [1.7 * inch, 1.7 * inch, 1.2 * inch, 0.6 * inch, 2.3 * inch],
        "No attestations in the last 24 hours.",
    )

    doc.build(story)
    return buffer.getvalue()
