# core/parsing.py
from __future__ import annotations

import logging
import re
from datetime import date
from io import BytesIO
from pathlib import Path
from typing import Any, Dict, List, Optional

from docx import Document

from .models import PartialPortfolio

logger = logging.getLogger(__name__)

# ============================================================
# CONFIG
# ============================================================

PDF_UNSUPPORTED_MESSAGE = (
    "PDF parsing is not yet supported. "
    "Please convert your CV to a text file (.txt) first."
)

DEFAULT_SKILL_LEVEL = 75
MAX_SKILLS = 20
MAX_SKILL_TOKENS = 20
MAX_ENTRIES = 10
BIO_MAX_LENGTH = 500

# Keyword bank, tried category by category.
SKILL_BANK: Dict[str, str] = {
    "languages": r"JavaScript|TypeScript|Python|Java|C\+\+|C#|Ruby|PHP|Go|Rust|Swift|Kotlin",
    "frameworks": r"React|Angular|Vue|Node\.js|Express|Django|Flask|Spring|Laravel",
    "markup": r"HTML|CSS|SCSS|SASS|Tailwind|Bootstrap",
    "databases": r"SQL|MySQL|PostgreSQL|MongoDB|Redis|Firebase",
    "cloud": r"AWS|Azure|GCP|Docker|Kubernetes|Git|CI/CD",
    "design": r"UI/UX|Figma|Adobe|Photoshop|Illustrator",
}
SKILL_PATTERNS = [
    (category, re.compile(rf"\b({alternatives})\b", re.I))
    for category, alternatives in SKILL_BANK.items()
]

MONTHS = {
    "jan": "01", "feb": "02", "mar": "03", "apr": "04", "may": "05", "jun": "06",
    "jul": "07", "aug": "08", "sep": "09", "oct": "10", "nov": "11", "dec": "12",
}

# Profile
NAME_LABEL_RE = re.compile(r"name\s*:?\s*([^\n]+)", re.I)
NAME_LINE_RE = re.compile(r"^([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+)+)", re.M)
EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
PHONE_RE = re.compile(r"\+?[\d \-()]{10,}")
TITLE_RES = [
    re.compile(r"(?:title|position|role)\s*:?\s*([^\n]+)", re.I),
    re.compile(
        r"(?:software engineer|developer|designer|manager|director|senior|junior|lead)\s+([^\n]+)",
        re.I,
    ),
]
BIO_RE = re.compile(r"(?:about|summary|objective|profile)\s*:?\s*([^\n]{50,500})", re.I)
LOCATION_RE = re.compile(r"(?:location|address|city|based in)\s*:?\s*([^\n]+)", re.I)
LINKEDIN_RES = [
    re.compile(r"linkedin\.com/in/([a-zA-Z0-9-]+)", re.I),
    re.compile(r"linkedin\s*:\s*([a-zA-Z0-9-]+)", re.I),
]
GITHUB_RES = [
    re.compile(r"github\.com/([a-zA-Z0-9-]+)", re.I),
    re.compile(r"github\s*:\s*([a-zA-Z0-9-]+)", re.I),
]
WEBSITE_RE = re.compile(r"(https?://[^\s]+)", re.I)

# Sections
SKILLS_SECTION_RE = re.compile(
    r"(?:skills|technical skills|technologies?|competencies?)\s*:?\s*([^\n]{50,1000})", re.I
)
SKILL_TOKEN_RE = re.compile(r"[A-Za-z][A-Za-z\s/&]+")
EXPERIENCE_SECTION_RE = re.compile(
    r"(?:experience|work experience|employment|career)\s*:?\s*([\s\S]{200,5000})", re.I
)
JOB_RE = re.compile(
    r"([A-Z][^\n]+?)\s+at\s+([A-Z][^\n]+?)(?:\s+\(([^\n]+?)\))?\s*([^\n]{50,300})", re.I
)
PROJECTS_SECTION_RE = re.compile(
    r"(?:projects|portfolio|projects?)\s*:?\s*([\s\S]{200,3000})", re.I
)

# Dates
DATE_RANGE_RE = re.compile(r"(\w+\s+\d{4})\s*[-–—]\s*(\w+\s+\d{4}|present|current)", re.I)
SINGLE_DATE_RE = re.compile(r"\w+\s+\d{4}")
MONTH_YEAR_RE = re.compile(r"(\w+)\s+(\d{4})")


class UnsupportedInputFormat(ValueError):
    pass


class CVParseError(Exception):
    pass


# ============================================================
# FILE → TEXT
# ============================================================

def extract_text_from_docx_bytes(b: bytes) -> str:
    try:
        doc = Document(BytesIO(b))
        return "\n".join(p.text for p in doc.paragraphs)
    except Exception as e:
        logger.warning("Could not read docx upload: %s", e)
        return ""


def extract_text_from_bytes(filename: str, b: bytes, content_type: Optional[str] = None) -> str:
    suffix = Path(filename or "").suffix.lower()
    if suffix == ".pdf" or content_type == "application/pdf":
        raise UnsupportedInputFormat(PDF_UNSUPPORTED_MESSAGE)
    if suffix == ".docx":
        return extract_text_from_docx_bytes(b)
    return b.decode("utf-8", errors="ignore")


# ============================================================
# DATES
# ============================================================

def parse_month_year(s: str, today: Optional[date] = None) -> str:
    """'Mar 2019' → '2019-03-01'. Unparseable input falls back to today."""
    m = MONTH_YEAR_RE.search(s or "")
    if not m:
        return (today or date.today()).isoformat()
    month = MONTHS.get(m.group(1).lower()[:3], "01")
    return f"{m.group(2)}-{month}-01"


def parse_dates(s: str, today: Optional[date] = None) -> Dict[str, Optional[str]]:
    result: Dict[str, Optional[str]] = {"start": None, "end": None}
    s = s or ""

    m = DATE_RANGE_RE.search(s)
    if m:
        result["start"] = parse_month_year(m.group(1), today)
        if m.group(2).lower() not in ("present", "current"):
            result["end"] = parse_month_year(m.group(2), today)
        return result

    single = SINGLE_DATE_RE.search(s)
    if single:
        result["start"] = parse_month_year(single.group(0), today)
    return result


# ============================================================
# PROFILE
# ============================================================

def _first_group(pattern: re.Pattern, text: str) -> Optional[str]:
    m = pattern.search(text)
    return m.group(1).strip() if m else None


def extract_name(text: str) -> Optional[str]:
    return _first_group(NAME_LABEL_RE, text) or _first_group(NAME_LINE_RE, text)


def extract_phone(text: str) -> Optional[str]:
    for m in PHONE_RE.finditer(text):
        candidate = m.group(0).strip()
        if any(c.isdigit() for c in candidate):
            return candidate
    return None


def extract_title(text: str) -> Optional[str]:
    for pattern in TITLE_RES:
        title = _first_group(pattern, text)
        if title:
            return title
    return None


def extract_social_links(text: str) -> Dict[str, str]:
    links: Dict[str, str] = {}

    for pattern in LINKEDIN_RES:
        handle = _first_group(pattern, text)
        if handle:
            links["linkedin"] = f"https://linkedin.com/in/{handle}"
            break

    for pattern in GITHUB_RES:
        handle = _first_group(pattern, text)
        if handle:
            links["github"] = f"https://github.com/{handle}"
            break

    website = _first_group(WEBSITE_RE, text)
    if website:
        links["website"] = website
    return links


def extract_profile(text: str) -> Dict[str, Any]:
    profile: Dict[str, Any] = {}

    fields = {
        "name": extract_name(text),
        "email": _first_group(EMAIL_RE, text),
        "phone": extract_phone(text),
        "title": extract_title(text),
        "bio": _first_group(BIO_RE, text),
        "location": _first_group(LOCATION_RE, text),
    }
    for key, value in fields.items():
        if value:
            profile[key] = value
    if "bio" in profile:
        profile["bio"] = profile["bio"][:BIO_MAX_LENGTH]

    links = extract_social_links(text)
    if links:
        profile["social_links"] = links
    return profile


# ============================================================
# SKILLS
# ============================================================

def extract_skills(text: str) -> List[Dict[str, Any]]:
    """
    Keyword bank first, then free-form runs from the same section.
    Identity is case-sensitive; order is first insertion.
    """
    m = SKILLS_SECTION_RE.search(text)
    if not m:
        return []
    section = m.group(1)

    found: Dict[str, Optional[str]] = {}
    for category, pattern in SKILL_PATTERNS:
        for skill in pattern.findall(section):
            found.setdefault(skill, category)

    for token in SKILL_TOKEN_RE.findall(section)[:MAX_SKILL_TOKENS]:
        token = token.strip()
        if 2 < len(token) < 30:
            found.setdefault(token, None)

    skills = []
    for name, category in list(found.items())[:MAX_SKILLS]:
        skill: Dict[str, Any] = {"name": name, "level": DEFAULT_SKILL_LEVEL}
        if category:
            skill["category"] = category
        skills.append(skill)
    return skills


# ============================================================
# EXPERIENCE & PROJECTS
# ============================================================

def _content_lines(section: str) -> List[str]:
    return [line.strip() for line in section.split("\n") if len(line.strip()) > 10]


def extract_experience(text: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
    m = EXPERIENCE_SECTION_RE.search(text)
    if not m:
        return []
    section = m.group(1)
    today = today or date.today()

    entries: List[Dict[str, Any]] = []
    for job in JOB_RE.finditer(section):
        if len(entries) >= MAX_ENTRIES:
            break
        dates = parse_dates((job.group(3) or "").strip(), today)
        entry = {
            "position": job.group(1).strip(),
            "company": job.group(2).strip(),
            "start_date": dates["start"] or today.isoformat(),
            "description": (job.group(4) or "").strip(),
        }
        if dates["end"]:
            entry["end_date"] = dates["end"]
        entries.append(entry)

    if not entries:
        lines = _content_lines(section)
        for i in range(0, len(lines), 3):
            if len(entries) >= MAX_ENTRIES:
                break
            entries.append({
                "position": lines[i],
                "company": lines[i + 1] if i + 1 < len(lines) else "Company",
                "start_date": today.isoformat(),
                "description": lines[i + 2] if i + 2 < len(lines) else "",
            })

    return entries[:MAX_ENTRIES]


def extract_projects(text: str) -> List[Dict[str, Any]]:
    m = PROJECTS_SECTION_RE.search(text)
    if not m:
        return []

    lines = _content_lines(m.group(1))
    projects = [
        {
            "title": lines[i],
            "description": lines[i + 1] if i + 1 < len(lines) else "Project description",
        }
        for i in range(0, len(lines), 2)
    ]
    return projects[:MAX_ENTRIES]


# ============================================================
# PIPELINE
# ============================================================

def extract_cv(text: str, today: Optional[date] = None) -> PartialPortfolio:
    """
    Run every extraction rule over the raw CV text.
    Sections that yield nothing are left out. Any failure discards the
    whole attempt.
    """
    text = text or ""
    today = today or date.today()
    try:
        sections = {
            "profile": extract_profile(text),
            "skills": extract_skills(text),
            "experience": extract_experience(text, today),
            "projects": extract_projects(text),
        }
        return PartialPortfolio.model_validate({k: v for k, v in sections.items() if v})
    except Exception as e:
        raise CVParseError(f"Error parsing CV: {e}") from e
