from __future__ import annotations

import re
from collections.abc import Iterable

OTHER_CATEGORY = "أخرى"

YEMENHR_CATEGORIES: dict[str, str] = {
    "Development": "تطوير",
    "Healthcare": "رعاية صحية",
    "Computers/IT": "تقنية معلومات",
    "Finance/Accounting": "محاسبة ومالية",
    "Engineering": "هندسة",
    "Sales/Marketing": "مبيعات وتسويق",
    "Administration": "إدارة",
    "Logistics": "لوجستيك",
    "Human Resources": "موارد بشرية",
    "Communication": "اتصالات",
    "Education/Training": "تعليم وتدريب",
    "Consulting": "استشارات",
    "Legal/Law": "قانون",
    "Others": OTHER_CATEGORY,
}

RELIEFWEB_CATEGORIES: dict[str, str] = {
    "Program/Project Management": "إدارة برامج ومشاريع",
    "Monitoring and Evaluation": "متابعة وتقييم",
    "Coordination": "تنسيق",
    "Logistics/Procurement": "لوجستيك ومشتريات",
    "Protection/Human Rights": "حماية وحقوق إنسان",
    "Health": "صحة",
    "Education": "تعليم",
    "WASH": "مياه وصرف صحي",
    "Information Management": "إدارة معلومات",
    "Administration/Finance": "إدارة ومالية",
    "Human Resources": "موارد بشرية",
    "Communications/Advocacy": "اتصالات ودعوة",
    "Food and Nutrition": "أمن غذائي وتغذية",
    "Information Technology": "تقنية معلومات",
    "Others": OTHER_CATEGORY,
}

SOURCE_CATEGORIES: dict[str, dict[str, str]] = {
    "yemenhr": YEMENHR_CATEGORIES,
    "reliefweb": RELIEFWEB_CATEGORIES,
}


def _pattern(expression: str) -> re.Pattern[str]:
    return re.compile(expression, re.IGNORECASE)


# First match wins: specific trades before the broad administration bucket.
# Acronyms are matched case-sensitively so "it"/"pr" in prose do not count.
KEYWORD_CATEGORIES: tuple[tuple[re.Pattern[str], str], ...] = (
    (_pattern(r"\b(doctor|nurse|medic|pharma|health|clinic|hospital|medical|nutrition|صح|طب|تمريض|صيدل)"), "رعاية صحية"),
    (_pattern(r"\b(engineer|civil|mechanical|electrical|structural|مهندس|هندس)"), "هندسة"),
    (
        _pattern(
            r"\b(software|developer|programmer|(?-i:IT)\b|data\s*(?:analyst|scientist|engineer)"
            r"|cyber|network|system\s*admin|تقنية|برمج|حاسوب)"
        ),
        "تقنية معلومات",
    ),
    (_pattern(r"\b(accountant|finance|financial|audit|budget|treasury|محاسب|مالي|تدقيق)"), "محاسبة ومالية"),
    (_pattern(r"\b(human\s*resource|(?-i:HR)\b|recruitment|talent|موارد\s*بشر)"), "موارد بشرية"),
    (_pattern(r"\b(sales|marketing|brand|digital\s*market|content|social\s*media|مبيعات|تسويق)"), "مبيعات وتسويق"),
    (_pattern(r"\b(teacher|trainer|training|education|instructor|tutor|تعليم|تدريب|مدرس)"), "تعليم وتدريب"),
    (_pattern(r"\b(logistics|supply\s*chain|warehouse|procurement|shipping|لوجست|مشتريات|مستودع)"), "لوجستيك"),
    (_pattern(r"\b(legal|lawyer|attorney|law\b|compliance|قانون|محام)"), "قانون"),
    (
        _pattern(r"\b(communicat|journalist|media|public\s*relation|(?-i:PR)\b|اتصال|إعلام|صحاف)"),
        "اتصالات",
    ),
    (_pattern(r"\b(consult|advisory|استشار)"), "استشارات"),
    (_pattern(r"\b(admin|office\s*manager|secretary|executive\s*assist|إدار|سكرتار)"), "إدارة"),
    (_pattern(r"\b(programme|program\s*officer|project\s*officer|development\s*officer|تطوير)"), "تطوير"),
)

RELIEFWEB_KEYWORD_CATEGORIES: tuple[tuple[re.Pattern[str], str], ...] = (
    (_pattern(r"\b(programme|program|project)\s*(officer|manager|coordinator|director|lead)"), "إدارة برامج ومشاريع"),
    (_pattern(r"((?-i:M&E)|\bmonitoring|\bevaluation|\b(?-i:MEAL)\b)"), "متابعة وتقييم"),
    (_pattern(r"\b(coordinat)"), "تنسيق"),
    (_pattern(r"\b(logistics|procurement|supply)"), "لوجستيك ومشتريات"),
    (_pattern(r"\b(protection|(?-i:GBV)|child\s*protect|human\s*rights)"), "حماية وحقوق إنسان"),
    (_pattern(r"\b(health|medic|nurse|doctor|nutrition)"), "صحة"),
    (_pattern(r"\b(education|teacher|school)"), "تعليم"),
    (_pattern(r"\b((?-i:WASH)|water|sanitation|hygiene)"), "مياه وصرف صحي"),
    (_pattern(r"\b(information\s*manage|(?-i:IM)\b|data\s*manage)"), "إدارة معلومات"),
    (_pattern(r"\b(admin|finance|accountant|budget)"), "إدارة ومالية"),
    (_pattern(r"\b(human\s*resource|(?-i:HR)\b|recruitment)"), "موارد بشرية"),
    (_pattern(r"\b(communicat|advocacy|media|public\s*info)"), "اتصالات ودعوة"),
    (_pattern(r"\b(food|nutrition|food\s*security)"), "أمن غذائي وتغذية"),
    (_pattern(r"\b((?-i:IT)\b|software|developer|technology|(?-i:ICT))"), "تقنية معلومات"),
)

_CATEGORY_LINE_RE = re.compile(r"🏷️?\s*الفئة:\s*(.+)")
_CATEGORY_LINE_STRIP_RE = re.compile(r"🏷️?\s*الفئة:.*\n?")


def valid_categories_for(source: str | None) -> list[str]:
    mapping = SOURCE_CATEGORIES.get(source or "", YEMENHR_CATEGORIES)
    return list(mapping.values())


def match_category_from_raw(raw_categories: Iterable[str], source: str) -> str | None:
    mapping = SOURCE_CATEGORIES.get(source)
    if not mapping:
        return None
    for raw in raw_categories:
        matched = mapping.get(raw.strip())
        if matched:
            return matched
    return None


def classify_by_keywords(title: str, body: str, source: str | None = None) -> str:
    text = f"{title} {body}"
    patterns = RELIEFWEB_KEYWORD_CATEGORIES if source == "reliefweb" else KEYWORD_CATEGORIES
    for pattern, category in patterns:
        if pattern.search(text):
            return category
    return OTHER_CATEGORY


def extract_category(text: str, source: str | None = None) -> str | None:
    """Read the category line out of a model reply.

    Returns ``None`` when the reply carries no category line at all, so the
    caller can fall back to keyword classification.
    """
    valid = valid_categories_for(source)
    for line in text.splitlines():
        match = _CATEGORY_LINE_RE.search(line)
        if not match:
            continue
        category = match.group(1).strip()
        if category in valid:
            return category
        for candidate in valid:
            if category and (candidate in category or category in candidate):
                return candidate
        return OTHER_CATEGORY
    return None


def remove_category_line(text: str) -> str:
    return _CATEGORY_LINE_STRIP_RE.sub("", text, count=1).strip()
