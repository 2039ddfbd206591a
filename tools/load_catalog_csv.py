from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
BACKEND = ROOT / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from syllabank.config import configure_logging, load_settings  # noqa: E402
from syllabank.errors import SyllabankError  # noqa: E402
from syllabank.ingest import ingest_csvs  # noqa: E402
from syllabank.store import open_store  # noqa: E402


async def load(args: argparse.Namespace) -> dict[str, int]:
    async with open_store(args.database_url) as store:
        return await ingest_csvs(
            store,
            courses=args.courses,
            professors=args.professors,
            files=args.files,
            syllabi=args.syllabi,
        )


def main() -> None:
    settings = load_settings()
    ap = argparse.ArgumentParser(description="Load course, professor, file and syllabus CSVs into the catalog")
    ap.add_argument("--database-url", type=str, default=settings.database_url)
    ap.add_argument("--courses", type=Path, default=settings.course_csv)
    ap.add_argument("--professors", type=Path, default=settings.professor_csv)
    ap.add_argument("--files", type=Path, default=settings.filename_csv)
    ap.add_argument("--syllabi", type=Path, default=settings.syllabi_csv)
    ap.add_argument("--log-level", type=str, default=settings.log_level)
    args = ap.parse_args()

    configure_logging(args.log_level)
    if not any((args.courses, args.professors, args.files, args.syllabi)):
        raise SystemExit("Nothing to load: pass at least one of --courses, --professors, --files, --syllabi")

    try:
        counts = asyncio.run(load(args))
    except SyllabankError as exc:
        raise SystemExit(f"Load failed: {exc}") from exc

    for kind, count in counts.items():
        print(f"{kind}: {count} row(s)")


if __name__ == "__main__":
    main()
