"""
Outbound WhatsApp copy (Hebrew).
"""
from typing import Optional, Sequence

from legalnexus.models import ExtractedFields

BRAND = "Legal Nexus"

DOC_TYPE_LABELS = {
    "contract": "חוזה/הסכם",
    "pleading": "כתב טענות",
    "court_decision": "פסק דין",
    "testimony": "תצהיר/עדות",
    "invoice": "חשבונית",
    "correspondence": "מכתב",
    "power_of_attorney": "ייפוי כוח",
    "id_document": "מסמך זיהוי",
    "other": "מסמך אחר",
}

UNAUTHORIZED = (
    f"{BRAND} - מספר הטלפון שלך לא מורשה לשליחת מסמכים.\n\n"
    "פנה למנהל המערכת להפעלת הרשאת וואטסאפ בפרופיל שלך."
)

USAGE_HINT = (
    f"{BRAND} - שלום! 👋\n\n"
    "שלח תמונה או PDF של מסמך משפטי ואעבד אותו אוטומטית.\n\n"
    "סוגי קבצים נתמכים: JPG, PNG, PDF"
)

UNSUPPORTED_TYPE = f"{BRAND} - סוג קובץ לא נתמך.\n\nשלח תמונה (JPG, PNG) או מסמך PDF."

SELECTION_FILE_EXPIRED = f"{BRAND} ❌ הקובץ פג תוקף. שלח שוב את המסמך."

PROCESSING_ERROR = f"{BRAND} ❌ שגיאה בעיבוד המסמך.\n\nאנא נסה שוב או העלה דרך המערכת."

LOW_CONFIDENCE = (
    f"{BRAND} ⚠️ המסמך התקבל, אך לא ניתן היה לחלץ ממנו נתונים באופן אוטומטי.\n\n"
    "המסמך נשמר במערכת לבדיקה ידנית.\n\n"
    "סטטוס: ממתין לאישור במערכת"
)


def organization_menu(names: Sequence[str]) -> str:
    """Numbered menu; the numbers are 1-based indexes into the stored choices."""
    lines = "\n".join(f"{i}. {name}" for i, name in enumerate(names, start=1))
    return f"{BRAND} - לאיזה משרד שייך המסמך?\n\n{lines}\n\nהשב עם המספר המתאים."


def invalid_choice(count: int) -> str:
    return f"בחירה לא תקינה. השב עם מספר בין 1 ל-{count}."


def extraction_summary(fields: ExtractedFields) -> str:
    doc_type = DOC_TYPE_LABELS.get(fields.document_type.value, fields.document_type.value)
    lines = [f"{BRAND} ✅ המסמך עובד בהצלחה", "", f"סוג: {doc_type}"]
    if fields.title:
        lines.append(f"כותרת: {fields.title}")
    if fields.document_date:
        lines.append(f"תאריך: {fields.document_date}")
    if fields.case_number:
        lines.append(f"מס' תיק: {fields.case_number}")
    names = [str(p.get("name")) for p in fields.parties if p.get("name")]
    if names:
        lines.append(f"צדדים: {', '.join(names)}")
    if fields.summary:
        lines.append(f"תקציר: {fields.summary}")
    lines.extend(["", "סטטוס: ממתין לאישור במערכת"])
    return "\n".join(lines)


def signing_invitation(
    file_name: str,
    signing_url: str,
    expiry_text: str,
    recipient_name: Optional[str] = None,
    company_name: Optional[str] = None,
) -> str:
    greeting = f"שלום {recipient_name}," if recipient_name else "שלום,"
    from_line = f" מ-{company_name}" if company_name else ""
    return "\n".join([
        f"✍️ {greeting}",
        "",
        f"קיבלת מסמך לחתימה דיגיטלית{from_line}.",
        f"📄 {file_name}",
        "",
        f"👉 לחתימה: {signing_url}",
        "",
        f"⏰ הקישור בתוקף עד {expiry_text}.",
    ])


def signing_completed(file_name: str) -> str:
    return f"{BRAND} ✅ תודה! המסמך \"{file_name}\" נחתם בהצלחה.\n\nהחתימה נשמרה במערכת."
