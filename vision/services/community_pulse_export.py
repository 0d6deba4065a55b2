"""
CommunityPulse export: render an engagement strategy as JSON, CSV,
Markdown, printable HTML or a styled Excel workbook.

Renderers are pure functions of ``(engagement_dict, method_dict | None)``;
``export_engagement`` loads the data, renders and records the export.
"""

import csv
import html
import io
import json
import logging
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from vision.core.exceptions import ValidationError
from vision.models import db
from vision.models.community_pulse import EngagementAuditLog, EngagementMethod
from vision.services import community_pulse_service
from vision.services.activity_service import log_activity
from vision.utils.helpers import utcnow

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"
EXPORT_FORMATS = {
    "json": "application/json",
    "csv": "text/csv",
    "markdown": "text/markdown",
    "html": "text/html",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
FILE_EXTENSIONS = {"json": "json", "csv": "csv", "markdown": "md", "html": "html", "xlsx": "xlsx"}

GOAL_TYPE_LABELS = {
    "explore": "Explore - Understand experiences and needs",
    "test": "Test - Get feedback on ideas or programs",
    "decide": "Decide - Make choices together with community",
}
PARTICIPATION_LABELS = {
    "informational": "Informational - Share information with community",
    "consultative": "Consultative - Gather input to inform decisions",
    "collaborative": "Collaborative - Work together on solutions",
    "community_controlled": "Community Controlled - Community leads decisions",
}
EQUITY_SECTIONS = (
    ("safety", "Safety", (
        ("physical_safety", "Physical safety plan in place"),
        ("emotional_safety", "Emotional safety considered"),
        ("distress_protocol", "Distress protocol prepared"),
    )),
    ("trustworthiness", "Trustworthiness", (
        ("purpose_explained", "Purpose clearly explained"),
        ("use_of_input_communicated", "Use of input communicated"),
        ("action_promises", "Only realistic promises made"),
    )),
    ("accessibility", "Accessibility", (
        ("language_access", "Language access provided"),
        ("physical_access", "Physical access ensured"),
        ("scheduling_options", "Multiple scheduling options"),
        ("compensation", "Participants compensated"),
    )),
    ("power_dynamics", "Power Dynamics", (
        ("co_facilitators", "Community co-facilitators"),
        ("dominance_management", "Plan to manage dominant voices"),
        ("anonymous_options", "Anonymous input options"),
    )),
    ("community_benefit", "Community Benefit", (
        ("direct_benefit", "Direct benefit to participants"),
        ("findings_shared", "Findings shared back"),
        ("informed_consent", "Informed consent obtained"),
    )),
)


def format_goal_type(value):
    return GOAL_TYPE_LABELS.get(value, value or "Not specified")


def format_participation_model(value):
    return PARTICIPATION_LABELS.get(value, value or "Not specified")


def _money(value):
    return f"${value:,.2f}" if value is not None else "Not specified"


def _or_dash(value):
    return value if value not in (None, "", []) else "Not specified"


def _checklist_rows(checklist: dict | None):
    """Yield (section_label, item_label, checked) for every known checklist item."""
    checklist = checklist or {}
    for key, section_label, items in EQUITY_SECTIONS:
        section = checklist.get(key) or {}
        for item_key, item_label in items:
            yield section_label, item_label, bool(section.get(item_key))


def _summary_rows(e: dict, method: dict | None) -> list[tuple[str, str]]:
    rows = [
        ("Title", e["title"]),
        ("Status", e["status"]),
        ("Current Stage", f"{e['current_stage']} - {e['stage_name']}"),
        ("Learning Goal", _or_dash(e["learning_goal"])),
        ("Goal Type", format_goal_type(e["goal_type"])),
        ("Target Population", _or_dash(e["target_population"])),
        ("Estimated Participants", _or_dash(e["estimated_participants"])),
        ("Relationship History", _or_dash(e["relationship_history"])),
        ("Cultural Considerations", _or_dash(e["cultural_considerations"])),
        ("Primary Method", method["name"] if method else _or_dash(e["primary_method"])),
        ("Secondary Methods", ", ".join(e["secondary_methods"]) or "None"),
        ("Method Rationale", _or_dash(e["method_rationale"])),
        ("Participation Model", format_participation_model(e["participation_model"])),
        ("Recruitment Plan", _or_dash(e["recruitment_plan"])),
        ("Questions", str(len(e["questions"]))),
        ("Start Date", _or_dash(e["start_date"])),
        ("End Date", _or_dash(e["end_date"])),
        ("Budget Estimate", _money(e["budget_estimate"])),
    ]
    return [(label, str(value)) for label, value in rows]


# ═══════════════════════════════════════════════════════════════
# Renderers
# ═══════════════════════════════════════════════════════════════
def export_json(e: dict, method: dict | None = None, exported_at: datetime | None = None) -> str:
    payload = {
        "exportVersion": EXPORT_VERSION,
        "exportedAt": (exported_at or utcnow()).isoformat(),
        "engagement": e,
        "method": method,
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


def export_csv(e: dict, method: dict | None = None) -> str:
    """Two-column ``Field,Value`` sheet including equity checklist Yes/No rows."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(["Field", "Value"])
    writer.writerows(_summary_rows(e, method))
    for section, item, checked in _checklist_rows(e["equity_checklist"]):
        writer.writerow([f"Equity: {section} - {item}", "Yes" if checked else "No"])
    return buf.getvalue()


def export_markdown(e: dict, method: dict | None = None, exported_at: datetime | None = None) -> str:
    lines = [f"# {e['title']}", ""]
    lines += [f"**Status:** {e['status']}  ", f"**Stage:** {e['current_stage']} - {e['stage_name']}", ""]

    lines += ["## 1. Learning Goals", ""]
    lines += [f"**Goal:** {_or_dash(e['learning_goal'])}", "", f"**Type:** {format_goal_type(e['goal_type'])}", ""]

    lines += ["## 2. Community Context", ""]
    lines += [f"**Target Population:** {_or_dash(e['target_population'])}", ""]
    lines += [f"**Estimated Participants:** {_or_dash(e['estimated_participants'])}", ""]
    if e["relationship_history"]:
        lines += [f"**Relationship History:** {e['relationship_history']}", ""]
    if e["cultural_considerations"]:
        lines += [f"**Cultural Considerations:** {e['cultural_considerations']}", ""]

    lines += ["## 3. Engagement Method", ""]
    if method:
        lines += [f"**Primary Method:** {method['name']}", ""]
        if method.get("description"):
            lines += [method["description"], ""]
        if method.get("group_size_min") is not None:
            lines += [f"- Group size: {method['group_size_min']}-{method['group_size_max']}"]
        if method.get("duration_min") is not None:
            lines += [f"- Duration: {method['duration_min']}-{method['duration_max']} minutes"]
        lines.append("")
    else:
        lines += [f"**Primary Method:** {_or_dash(e['primary_method'])}", ""]
    if e["secondary_methods"]:
        lines += [f"**Secondary Methods:** {', '.join(e['secondary_methods'])}", ""]
    if e["method_rationale"]:
        lines += [f"**Rationale:** {e['method_rationale']}", ""]

    lines += ["## 4. Strategy Design", ""]
    lines += [f"**Participation Model:** {format_participation_model(e['participation_model'])}", ""]
    if e["recruitment_plan"]:
        lines += [f"**Recruitment Plan:** {e['recruitment_plan']}", ""]
    if e["questions"]:
        lines += ["### Questions", ""]
        for i, q in enumerate(e["questions"], 1):
            lines.append(f"{i}. ({q.get('type', 'core')}) {q.get('question', '')}")
        lines.append("")
    lines += ["### Equity Checklist", ""]
    current = None
    for section, item, checked in _checklist_rows(e["equity_checklist"]):
        if section != current:
            if current is not None:
                lines.append("")
            lines.append(f"**{section}**")
            current = section
        lines.append(f"- [{'x' if checked else ' '}] {item}")
    lines.append("")

    lines += ["## 5. Timeline & Budget", ""]
    lines += [f"**Start Date:** {_or_dash(e['start_date'])}  ", f"**End Date:** {_or_dash(e['end_date'])}  "]
    lines += [f"**Budget Estimate:** {_money(e['budget_estimate'])}", ""]
    milestones = (e["timeline"] or {}).get("milestones") or []
    for m in milestones:
        lines.append(f"- {m.get('date', '')}: {m.get('title', '')}")
    if milestones:
        lines.append("")

    generated = (exported_at or utcnow()).strftime("%Y-%m-%d")
    lines += ["---", "", f"*Generated by CommunityPulse on {generated}*", ""]
    return "\n".join(lines)


def export_html(e: dict, method: dict | None = None, exported_at: datetime | None = None) -> str:
    """Printable HTML with inline CSS; every value is escaped."""
    esc = html.escape
    rows_html = "".join(
        f"<tr><th>{esc(label)}</th><td>{esc(value)}</td></tr>" for label, value in _summary_rows(e, method)
    )
    checklist_html = "".join(
        f"<li class=\"{'done' if checked else 'open'}\">{'&#10003;' if checked else '&#9744;'} "
        f"{esc(section)}: {esc(item)}</li>"
        for section, item, checked in _checklist_rows(e["equity_checklist"])
    )
    questions_html = "".join(f"<li>{esc(q.get('question', ''))}</li>" for q in e["questions"])
    generated = (exported_at or utcnow()).strftime("%Y-%m-%d %H:%M UTC")

    return f"""<!DOCTYPE html>
<html><head>
<meta charset="utf-8">
<title>{esc(e['title'])} - Engagement Strategy</title>
<style>
    body {{ font-family: 'Segoe UI', Arial, sans-serif; margin: 40px; color: #333; }}
    h1 {{ color: #2E5E4E; margin-bottom: 4px; }}
    .meta {{ color: #666; font-size: 13px; margin-bottom: 24px; }}
    table {{ border-collapse: collapse; width: 100%; margin: 16px 0; }}
    th {{ text-align: left; width: 240px; padding: 8px 12px; background: #f5f7fa; }}
    td {{ padding: 8px 12px; border-bottom: 1px solid #e0e0e0; }}
    li.done {{ color: #27AE60; }}
    li.open {{ color: #999; }}
    @media print {{ body {{ margin: 20px; }} }}
</style>
</head><body>
<h1>{esc(e['title'])}</h1>
<p class="meta">Engagement strategy - Generated {generated}</p>
<table><tbody>{rows_html}</tbody></table>
<h2>Questions</h2>
<ol>{questions_html}</ol>
<h2>Equity Checklist</h2>
<ul>{checklist_html}</ul>
<p class="meta">Generated by CommunityPulse</p>
</body></html>"""


HEADER_FILL = PatternFill(start_color="2E5E4E", end_color="2E5E4E", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)


def export_xlsx(e: dict, method: dict | None = None) -> bytes:
    """Workbook with a Summary sheet and an Equity Checklist sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws.append(["Field", "Value"])
    for row in _summary_rows(e, method):
        ws.append(list(row))

    checklist = wb.create_sheet("Equity Checklist")
    checklist.append(["Section", "Item", "Done"])
    for section, item, checked in _checklist_rows(e["equity_checklist"]):
        checklist.append([section, item, "Yes" if checked else "No"])

    for sheet in (ws, checklist):
        for cell in sheet[1]:
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
        sheet.column_dimensions["A"].width = 28
        sheet.column_dimensions["B"].width = 60
        for row in sheet.iter_rows(min_row=2):
            row[1].alignment = Alignment(wrap_text=True, vertical="top")

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


# ═══════════════════════════════════════════════════════════════
# Export operation
# ═══════════════════════════════════════════════════════════════
def export_engagement(org_id: int, engagement_id: int, user_id: int, fmt: str) -> tuple[str | bytes, str, str]:
    """
    Render the engagement and record the export.

    The first export of a completed engagement moves it to ``exported``;
    every export appends the format to ``exported_to`` (once) and stamps
    ``exported_at``.

    Returns:
        (content, mimetype, download_filename)

    Raises:
        NotFoundError: Engagement missing.
        ValidationError: Unknown format.
    """
    fmt = (fmt or "").lower()
    if fmt == "md":
        fmt = "markdown"
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"format must be one of {list(EXPORT_FORMATS)}", details={"format": "invalid"})

    engagement = community_pulse_service.get_engagement(org_id, engagement_id)
    method = None
    if engagement.primary_method:
        m = EngagementMethod.query.filter_by(slug=engagement.primary_method).first()
        method = m.to_dict() if m else None

    now = datetime.now(timezone.utc)
    data = engagement.to_dict()
    if fmt == "json":
        content = export_json(data, method, now)
    elif fmt == "csv":
        content = export_csv(data, method)
    elif fmt == "markdown":
        content = export_markdown(data, method, now)
    elif fmt == "html":
        content = export_html(data, method, now)
    else:
        content = export_xlsx(data, method)

    targets = list(engagement.exported_to or [])
    if fmt not in targets:
        targets.append(fmt)
    engagement.exported_to = targets
    engagement.exported_at = now
    if engagement.status == "completed":
        engagement.status = "exported"
    db.session.add(EngagementAuditLog(
        engagement_id=engagement.id,
        organization_id=org_id,
        user_id=user_id,
        action="engagement.exported",
        details={"format": fmt},
    ))
    log_activity(org_id, user_id, "engagement", "exported", entity_id=engagement.id,
                 description=f"Exported engagement {engagement.title} as {fmt}")
    db.session.commit()
    logger.info("Engagement exported id=%s format=%s", engagement.id, fmt)

    slug = "".join(c if c.isalnum() else "-" for c in engagement.title.lower()).strip("-")[:60] or "engagement"
    return content, EXPORT_FORMATS[fmt], f"{slug}.{FILE_EXTENSIONS[fmt]}"
