import io
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from jobpilot.core.errors import InputValidationError

MIN_TEXT_CHARS = 50
PDF_MAGIC = b"%PDF"

SECTION_ALIASES: dict[str, str] = {
    "SUMMARY": "summary",
    "PROFESSIONAL SUMMARY": "summary",
    "PROFILE": "summary",
    "OBJECTIVE": "summary",
    "EDUCATION": "education",
    "TECHNICAL SKILLS": "skills",
    "SKILLS": "skills",
    "CORE SKILLS": "skills",
    "EXPERIENCE": "experience",
    "WORK EXPERIENCE": "experience",
    "RELEVANT EXPERIENCE": "experience",
    "PROFESSIONAL EXPERIENCE": "experience",
    "PROJECTS": "projects",
    "CERTIFICATIONS": "certifications",
    "LANGUAGES": "languages",
}

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"(?:\+?\d{1,3}[\s-]?)?(?:\(\d{3}\)|\d{3,4})[\s-]?\d{3}[\s-]?\d{4}")
URL_RE = re.compile(r"(?:https?://|www\.)\S+|(?:linkedin|github)\.com/\S+", re.IGNORECASE)
BULLET_RE = re.compile(r"^\s*(?:[●•▪\-*–]|\d+\.)\s*")
MONTH = r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?"
DATE_RANGE_RE = re.compile(
    rf"((?:{MONTH}\s+)?\d{{4}})\s*[-–—]\s*(Present|Current|Now|(?:{MONTH}\s+)?\d{{4}})",
    flags=re.IGNORECASE,
)
YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
DEGREE_HINTS = ("bachelor", "master", "bs ", "bsc", "ms ", "msc", "phd", "mba", "b.s", "m.s", "diploma", "degree")


def extract_pdf_text(data: bytes) -> str:
    if not data.startswith(PDF_MAGIC):
        raise InputValidationError("Only PDF files are supported")
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n".join(page.extract_text() or "" for page in reader.pages)
    except PdfReadError as exc:
        raise InputValidationError(f"Could not read PDF: {exc}") from exc


def parse_profile_pdf(data: bytes, *, filename: str | None = None) -> dict[str, Any]:
    profile = parse_profile_text(extract_pdf_text(data))
    if filename:
        profile["resume_source"]["filename"] = Path(filename).name
    return profile


def parse_profile_text(raw_text: str) -> dict[str, Any]:
    lines = _normalize_lines(raw_text)
    char_count = sum(len(line) for line in lines)
    if char_count < MIN_TEXT_CHARS:
        raise InputValidationError(
            "Could not extract enough text from the résumé. Upload a text-based PDF rather than a scan."
        )

    sections = _split_sections(lines)
    skills = _parse_skills(sections.get("skills", []))
    return {
        "personal_info": _parse_personal_info(sections.get("header", [])),
        "summary": " ".join(sections.get("summary", [])).strip(),
        "education": _parse_education(sections.get("education", [])),
        "experience": _parse_experience(sections.get("experience", [])),
        "projects": _parse_bullet_list(sections.get("projects", [])),
        "skills": skills,
        "certifications": _parse_bullet_list(sections.get("certifications", [])),
        "languages": _parse_skills(sections.get("languages", [])),
        "resume_source": {
            "parsed_at": datetime.now(timezone.utc).isoformat(),
            "char_count": char_count,
            "section_names": [name for name, body in sections.items() if name != "header" and body],
        },
    }


def _normalize_lines(text: str) -> list[str]:
    text = (text or "").replace("\r", "\n").replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
    return [line for line in lines if line]


def _heading(line: str) -> str | None:
    candidate = line.strip().rstrip(":").upper()
    return SECTION_ALIASES.get(candidate)


def _split_sections(lines: list[str]) -> dict[str, list[str]]:
    sections: dict[str, list[str]] = {"header": []}
    current = "header"
    for line in lines:
        name = _heading(line)
        if name:
            current = name
            sections.setdefault(current, [])
            continue
        sections.setdefault(current, []).append(line)
    return sections


def _parse_personal_info(header: list[str]) -> dict[str, Any]:
    text = " ".join(header)
    email = EMAIL_RE.search(text)
    phone = PHONE_RE.search(text)
    links = [link.rstrip(".,;|") for link in URL_RE.findall(text)]

    name = ""
    for line in header:
        if EMAIL_RE.search(line) or URL_RE.search(line) or any(ch.isdigit() for ch in line):
            continue
        if 1 < len(line.split()) <= 5:
            name = line.title() if line.isupper() else line
            break

    location = ""
    for line in header[1:]:
        for part in re.split(r"[|•●]", line):
            part = part.strip()
            if "," in part and not EMAIL_RE.search(part) and not any(ch.isdigit() for ch in part):
                location = part
                break
        if location:
            break

    return {
        "name": name,
        "email": email.group(0) if email else "",
        "phone": phone.group(0).strip() if phone else "",
        "location": location,
        "links": links,
    }


def _parse_bullet_list(lines: list[str]) -> list[str]:
    items: list[str] = []
    for line in lines:
        if BULLET_RE.match(line) or not items:
            items.append(BULLET_RE.sub("", line).strip())
        else:
            items[-1] = f"{items[-1]} {line}".strip()
    return [item for item in items if item]


def _parse_skills(lines: list[str]) -> list[str]:
    skills: list[str] = []
    for line in lines:
        body = BULLET_RE.sub("", line)
        if ":" in body:
            body = body.split(":", 1)[1]
        for token in re.split(r"[,;|•●]", body):
            token = token.strip()
            if token and len(token) <= 40 and token.lower() not in {s.lower() for s in skills}:
                skills.append(token)
    return skills


def _parse_experience(lines: list[str]) -> list[dict[str, Any]]:
    entries: list[dict[str, Any]] = []
    current: dict[str, Any] | None = None
    for line in lines:
        if BULLET_RE.match(line):
            if current is None:
                current = {"title": "", "company": "", "start_date": "", "end_date": "", "bullets": []}
                entries.append(current)
            current["bullets"].append(BULLET_RE.sub("", line).strip())
            continue

        dates = DATE_RANGE_RE.search(line)
        if dates or current is None or current["bullets"]:
            head = DATE_RANGE_RE.sub("", line).strip(" |,-–—")
            title, _, company = head.partition(" at ")
            if not company:
                title, _, company = head.partition(" | ")
            if not company and "," in head:
                title, _, company = head.partition(",")
            current = {
                "title": title.strip(),
                "company": company.strip(),
                "start_date": dates.group(1) if dates else "",
                "end_date": dates.group(2) if dates else "",
                "bullets": [],
            }
            entries.append(current)
        elif current["bullets"] == [] and not current["company"]:
            current["company"] = line
        else:
            current["bullets"].append(line)
    return entries


def _parse_education(lines: list[str]) -> list[dict[str, str]]:
    entries: list[dict[str, str]] = []
    for line in lines:
        body = BULLET_RE.sub("", line)
        lowered = f"{body.lower()} "
        found = YEAR_RE.search(body)
        year = found.group(0) if found else ""
        cleaned = YEAR_RE.sub("", body).strip(" |,-–—")
        if any(hint in lowered for hint in DEGREE_HINTS):
            entries.append({"degree": cleaned, "school": "", "year": year})
        elif entries and not entries[-1]["school"]:
            entries[-1]["school"] = cleaned
            entries[-1]["year"] = entries[-1]["year"] or year
        else:
            entries.append({"degree": "", "school": cleaned, "year": year})
    return entries
