"""Batch PDF rendering of tailored résumés.

One engine instance serves a whole batch and documents are rendered one
at a time against a single reusable surface. A failed document leaves its
result without a path; a failed engine start leaves every result without
a path. Rendering never raises to the pipeline.
"""

import html
import re
import textwrap
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from jobpilot.agents.state import CVResult
from jobpilot.core.config import Settings
from jobpilot.core.logging import get_logger

logger = get_logger(__name__)

A4_MARGINS = {"top": "15mm", "bottom": "15mm", "left": "18mm", "right": "18mm"}

CV_STYLES = """
* { margin: 0; padding: 0; box-sizing: border-box; }
body { font-family: 'Segoe UI', Arial, sans-serif; font-size: 10.5pt; color: #1a202c; line-height: 1.5; }
.header { background: #1e3a5f; color: #fff; padding: 26px 32px 20px; }
.name { font-size: 22pt; font-weight: 700; }
.tailored-for { font-size: 9.5pt; color: #93c5fd; margin-top: 3px; font-style: italic; }
.contact-row { display: flex; flex-wrap: wrap; gap: 14px; margin-top: 10px; font-size: 9pt; color: #bfdbfe; }
.body { padding: 20px 32px 28px; }
.section { margin-bottom: 18px; }
.section-title { font-size: 9pt; font-weight: 700; text-transform: uppercase; letter-spacing: 1.2px;
  color: #1e3a5f; border-bottom: 2px solid #1e3a5f; padding-bottom: 4px; margin-bottom: 10px; }
.summary { font-size: 10pt; color: #374151; line-height: 1.7; }
.chips { display: flex; flex-wrap: wrap; gap: 6px; }
.chip { background: #eff6ff; border: 1px solid #bfdbfe; color: #1d4ed8; padding: 2px 10px;
  border-radius: 12px; font-size: 8.5pt; font-weight: 600; }
.item { margin-bottom: 14px; }
.item-header { display: flex; justify-content: space-between; gap: 12px; }
.item-title { font-size: 10.5pt; font-weight: 700; color: #1e3a5f; }
.item-sub { font-size: 9.5pt; color: #2563eb; font-weight: 600; }
.item-date { font-size: 8.5pt; color: #6b7280; white-space: nowrap; }
.bullets { padding-left: 16px; margin-top: 6px; }
.bullets li { font-size: 9.5pt; color: #374151; margin-bottom: 3px; }
"""


def safe_filename_fragment(value: str | None, *, default: str = "company", max_length: int = 30) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9]", "_", value or "")[:max_length]
    return cleaned or default


def build_output_path(output_dir: Path, owner_id: str, company: str | None) -> Path:
    owner_fragment = safe_filename_fragment(str(owner_id)[-6:], default="owner")
    company_fragment = safe_filename_fragment(company)
    stamp = int(time.time() * 1000)
    path = output_dir / f"cv_{owner_fragment}_{company_fragment}_{stamp}.pdf"
    while path.exists():
        stamp += 1
        path = output_dir / f"cv_{owner_fragment}_{company_fragment}_{stamp}.pdf"
    return path


def _label(item: Any, *keys: str) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        for key in keys:
            value = item.get(key)
            if value:
                return str(value)
    return ""


def _skill_names(cv: dict[str, Any]) -> list[str]:
    skills = cv.get("skills") or []
    if isinstance(skills, dict):
        flattened: list[str] = []
        for values in skills.values():
            if isinstance(values, list):
                flattened.extend(str(value) for value in values if value)
        return flattened
    return [name for name in (_label(skill, "name") for skill in skills) if name]


def _bullets(entry: dict[str, Any], limit: int = 5) -> list[str]:
    for key in ("achievements", "responsibilities", "highlights", "bullets"):
        values = entry.get(key)
        if isinstance(values, list) and values:
            return [str(value) for value in values[:limit] if value]
    return []


def cv_sections(cv: dict[str, Any]) -> dict[str, Any]:
    """Normalise the loosely-shaped tailored CV into renderable sections."""
    contact = cv.get("contact_info") or cv.get("contactInfo") or cv.get("personal_info") or {}
    experience = []
    for entry in cv.get("experience") or []:
        if not isinstance(entry, dict):
            continue
        experience.append(
            {
                "title": _label(entry, "role", "title", "position"),
                "subtitle": _label(entry, "company", "organization"),
                "date": _label(entry, "duration", "period", "dates", "date"),
                "bullets": _bullets(entry),
            }
        )
    education = []
    for entry in cv.get("education") or []:
        if not isinstance(entry, dict):
            continue
        education.append(
            {
                "title": _label(entry, "degree", "qualification", "field"),
                "subtitle": _label(entry, "institution", "school", "university"),
                "date": _label(entry, "year", "duration", "graduation_year"),
                "bullets": [],
            }
        )
    return {
        "name": str(contact.get("name") or "Candidate"),
        "contact": [str(contact[key]) for key in ("email", "phone", "location", "linkedin", "github") if contact.get(key)],
        "summary": str(cv.get("summary") or cv.get("professional_summary") or cv.get("profile") or ""),
        "skills": _skill_names(cv),
        "experience": experience,
        "education": education,
        "certifications": [name for name in (_label(c, "name") for c in cv.get("certifications") or []) if name],
        "languages": [name for name in (_label(lang, "language", "name") for lang in cv.get("languages") or []) if name],
    }


def build_cv_html(cv: dict[str, Any], job_title: str | None, company: str | None) -> str:
    sections = cv_sections(cv)
    esc = html.escape

    def entries(items: list[dict[str, Any]]) -> str:
        rendered = []
        for item in items:
            bullets = "".join(f"<li>{esc(b)}</li>" for b in item["bullets"])
            rendered.append(
                '<div class="item"><div class="item-header"><div>'
                f'<div class="item-title">{esc(item["title"])}</div>'
                f'<div class="item-sub">{esc(item["subtitle"])}</div></div>'
                f'<div class="item-date">{esc(item["date"])}</div></div>'
                + (f'<ul class="bullets">{bullets}</ul>' if bullets else "")
                + "</div>"
            )
        return "".join(rendered)

    def section(title: str, content: str) -> str:
        return f'<div class="section"><div class="section-title">{title}</div>{content}</div>' if content else ""

    def chips(values: list[str]) -> str:
        return '<div class="chips">' + "".join(f'<span class="chip">{esc(v)}</span>' for v in values) + "</div>" if values else ""

    tailored = (
        f'<div class="tailored-for">Tailored for: {esc(job_title)} at {esc(company)}</div>' if job_title and company else ""
    )
    contact = "".join(f"<span>{esc(value)}</span>" for value in sections["contact"])
    body = "".join(
        [
            section("Professional Summary", f'<p class="summary">{esc(sections["summary"])}</p>' if sections["summary"] else ""),
            section("Core Skills", chips(sections["skills"])),
            section("Work Experience", entries(sections["experience"])),
            section("Education", entries(sections["education"])),
            section("Certifications", "".join(f"<div>{esc(c)}</div>" for c in sections["certifications"])),
            section("Languages", chips(sections["languages"])),
        ]
    )
    return (
        '<!DOCTYPE html><html lang="en"><head><meta charset="UTF-8">'
        f"<style>{CV_STYLES}</style></head><body>"
        f'<div class="header"><div class="name">{esc(sections["name"])}</div>{tailored}'
        f'<div class="contact-row">{contact}</div></div>'
        f'<div class="body">{body}</div></body></html>'
    )


def build_cv_text(cv: dict[str, Any], job_title: str | None, company: str | None) -> tuple[str, str]:
    sections = cv_sections(cv)
    lines: list[str] = []
    if job_title and company:
        lines.append(f"Tailored for: {job_title} at {company}")
    if sections["contact"]:
        lines.append(" | ".join(sections["contact"]))
    if sections["summary"]:
        lines += ["", "PROFESSIONAL SUMMARY", sections["summary"]]
    if sections["skills"]:
        lines += ["", "CORE SKILLS", ", ".join(sections["skills"])]
    for heading, items in (("WORK EXPERIENCE", sections["experience"]), ("EDUCATION", sections["education"])):
        if not items:
            continue
        lines += ["", heading]
        for item in items:
            header = " - ".join(part for part in (item["title"], item["subtitle"]) if part)
            lines.append(f"{header} ({item['date']})" if item["date"] else header)
            lines += [f"  * {bullet}" for bullet in item["bullets"]]
    if sections["certifications"]:
        lines += ["", "CERTIFICATIONS"] + sections["certifications"]
    if sections["languages"]:
        lines += ["", "LANGUAGES", ", ".join(sections["languages"])]
    return sections["name"], "\n".join(lines)


class RenderEngine(ABC):
    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def render(self, output_path: Path, cv: dict[str, Any], job_title: str | None, company: str | None) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class PlaywrightRenderEngine(RenderEngine):
    """Headless Chromium; one browser and one page are reused for the batch."""

    def __init__(self, *, headless: bool = True, timeout_ms: int = 30000) -> None:
        self.headless = headless
        self.timeout_ms = timeout_ms
        self._playwright = None
        self._browser = None
        self._page = None

    def start(self) -> None:
        try:
            from playwright.sync_api import sync_playwright
        except Exception as exc:
            raise RuntimeError("Playwright is required for PDF rendering. Install playwright and browsers.") from exc

        self._playwright = sync_playwright().start()
        try:
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                args=["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"],
            )
            self._page = self._browser.new_page()
        except Exception:
            self.close()
            raise

    def render(self, output_path: Path, cv: dict[str, Any], job_title: str | None, company: str | None) -> None:
        if self._page is None:
            raise RuntimeError("Render engine not started")
        self._page.set_content(build_cv_html(cv, job_title, company), wait_until="domcontentloaded", timeout=self.timeout_ms)
        self._page.pdf(path=str(output_path), format="A4", margin=A4_MARGINS, print_background=True)

    def close(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._page = self._browser = self._playwright = None
        try:
            if browser is not None:
                browser.close()
        finally:
            if playwright is not None:
                playwright.stop()


class ReportLabRenderEngine(RenderEngine):
    """Plain-text PDFs; needs no browser."""

    def __init__(self) -> None:
        self._started = False

    def start(self) -> None:
        self._started = True

    def render(self, output_path: Path, cv: dict[str, Any], job_title: str | None, company: str | None) -> None:
        if not self._started:
            raise RuntimeError("Render engine not started")
        title, body = build_cv_text(cv, job_title, company)
        pdf = canvas.Canvas(str(output_path), pagesize=A4)
        width, height = A4
        margin = 54
        line_height = 14
        y = height - margin

        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawString(margin, y, title)
        y -= line_height * 2

        pdf.setFont("Helvetica", 10)
        for paragraph in body.splitlines():
            for line in textwrap.wrap(paragraph, width=96) or [""]:
                if y < margin:
                    pdf.showPage()
                    pdf.setFont("Helvetica", 10)
                    y = height - margin
                pdf.drawString(margin, y, line)
                y -= line_height
        pdf.save()

    def close(self) -> None:
        self._started = False


def build_render_engine(settings: Settings) -> RenderEngine:
    engine = (settings.render_engine or "playwright").strip().lower()
    if engine == "playwright":
        return PlaywrightRenderEngine(headless=settings.render_headless, timeout_ms=settings.render_timeout_ms)
    if engine == "reportlab":
        return ReportLabRenderEngine()
    raise ValueError("Unsupported RENDER_ENGINE. Supported values: playwright, reportlab.")


class DocumentBatchRenderer:
    def __init__(self, engine: RenderEngine, output_dir: Path) -> None:
        self.engine = engine
        self.output_dir = Path(output_dir)

    def render_batch(self, results: list[CVResult], *, owner_id: str) -> list[CVResult]:
        """Return one result per input, with ``document_path`` set where rendering succeeded."""
        rendered = [result.model_copy(update={"document_path": None, "has_document": False}) for result in results]
        targets = [result for result in rendered if result.usable]
        if not targets:
            return rendered

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self.engine.start()
        except Exception as exc:
            logger.error("Render engine failed to start", extra={"extra": {"error": str(exc)}})
            self._close_quietly()
            return rendered

        try:
            for result in targets:
                output_path = build_output_path(self.output_dir, owner_id, result.company)
                try:
                    self.engine.render(output_path, result.cv or {}, result.job_title, result.company)
                except Exception as exc:
                    logger.error(
                        "Render failed",
                        extra={"extra": {"job_id": result.job_id, "company": result.company, "error": str(exc)}},
                    )
                    continue
                result.document_path = str(output_path)
                result.has_document = True
                logger.info("Rendered CV", extra={"extra": {"job_id": result.job_id, "path": output_path.name}})
        finally:
            self._close_quietly()
        return rendered

    def _close_quietly(self) -> None:
        try:
            self.engine.close()
        except Exception as exc:
            logger.warning("Render engine close failed", extra={"extra": {"error": str(exc)}})
