import argparse
import json
from pathlib import Path

from jobpilot.core.errors import InputValidationError
from jobpilot.services.profile_parser import parse_profile_pdf


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parse a PDF résumé into the pipeline's profile JSON")
    parser.add_argument(
        "source",
        nargs="?",
        default="resume",
        help="PDF file, or a directory whose first PDF is used (default: resume/)",
    )
    parser.add_argument("--output", default="data/profile.json", help="Where to write the profile JSON")
    return parser.parse_args()


def resolve_pdf(source: Path) -> Path:
    if source.is_file():
        return source
    candidates = sorted(source.glob("*.pdf")) if source.is_dir() else []
    if not candidates:
        raise SystemExit(f"No PDF found at {source}")
    return candidates[0]


def main() -> None:
    args = parse_args()
    pdf_path = resolve_pdf(Path(args.source))
    try:
        profile = parse_profile_pdf(pdf_path.read_bytes(), filename=pdf_path.name)
    except InputValidationError as exc:
        raise SystemExit(f"{pdf_path}: {exc}") from exc

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(profile, indent=2, ensure_ascii=False), encoding="utf-8")

    personal = profile["personal_info"]
    print(f"{pdf_path} -> {output_path}")
    print(f"Candidate: {personal['name'] or '(name not found)'} <{personal['email'] or 'no email'}>")
    print(f"Sections: {', '.join(profile['resume_source']['section_names']) or 'none detected'}")
    for key in ("experience", "education", "projects", "skills"):
        print(f"  {key}: {len(profile[key])}")


if __name__ == "__main__":
    main()
