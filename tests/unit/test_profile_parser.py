import io

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from jobpilot.core.errors import InputValidationError
from jobpilot.services.profile_parser import parse_profile_pdf, parse_profile_text

RESUME_TEXT = """Alex Carter
alex@example.com | (905) 299-9148 | London, ON | github.com/alexcarter
SUMMARY
Backend engineer building Python APIs.
SKILLS
Languages: Python, SQL, JavaScript
Tools: Docker, Git
EXPERIENCE
Senior Software Engineer at Northwind Labs Jan 2022 - Present
● Reduced API latency by 35%
● Led a team of 4 engineers
Software Engineer | Contoso 2019 - 2021
● Built billing pipeline
EDUCATION
BSc Computer Science
University of Western Ontario 2019
"""


def test_parse_profile_text_extracts_sections():
    profile = parse_profile_text(RESUME_TEXT)

    assert profile["personal_info"]["name"] == "Alex Carter"
    assert profile["personal_info"]["email"] == "alex@example.com"
    assert profile["personal_info"]["location"] == "London, ON"
    assert profile["summary"] == "Backend engineer building Python APIs."
    assert profile["skills"] == ["Python", "SQL", "JavaScript", "Docker", "Git"]

    first, second = profile["experience"]
    assert first["title"] == "Senior Software Engineer"
    assert first["company"] == "Northwind Labs"
    assert first["end_date"] == "Present"
    assert first["bullets"] == ["Reduced API latency by 35%", "Led a team of 4 engineers"]
    assert second["company"] == "Contoso"

    assert profile["education"] == [
        {"degree": "BSc Computer Science", "school": "University of Western Ontario", "year": "2019"}
    ]


def test_too_little_text_is_rejected():
    with pytest.raises(InputValidationError):
        parse_profile_text("Alex Carter\nPython")


def test_non_pdf_bytes_are_rejected():
    with pytest.raises(InputValidationError):
        parse_profile_pdf(b"PK\x03\x04 not a pdf")


def test_parse_profile_pdf_reads_text_layer():
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    y = 800
    for line in RESUME_TEXT.splitlines():
        pdf.drawString(50, y, line.replace("●", "-"))
        y -= 14
    pdf.save()

    profile = parse_profile_pdf(buffer.getvalue(), filename="uploads/alex.pdf")

    assert profile["personal_info"]["email"] == "alex@example.com"
    assert "Python" in profile["skills"]
    assert profile["resume_source"]["filename"] == "alex.pdf"
