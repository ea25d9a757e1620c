"""Traverse - visa application analysis

Simple CLI for running an analysis against a travel corridor.
"""

import argparse
import asyncio
import base64
import sys
import uuid
from pathlib import Path

from pydantic import ValidationError

from traverse.agents.orchestrator import AnalysisOrchestrator
from traverse.config import settings
from traverse.models.events import DONE, parse_event
from traverse.models.schemas import TravelDetails, UploadedDocument
from traverse.services.sse import guard_stream

MIME_TYPES = {".png": "image/png", ".jpg": "image/jpeg", ".jpeg": "image/jpeg"}


def load_document(path: Path) -> UploadedDocument:
    mime_type = MIME_TYPES.get(path.suffix.lower())
    if mime_type is None:
        raise ValueError(f"Unsupported document type: {path.name} (use PNG or JPEG)")
    data = path.read_bytes()
    return UploadedDocument(
        id=str(uuid.uuid4()),
        filename=path.name,
        mime_type=mime_type,
        base64=base64.b64encode(data).decode("ascii"),
        size_bytes=len(data),
    )


def print_event(event) -> None:
    event_type = event.type

    if event_type == "orchestrator":
        if event.action == "planning":
            print(f"[*] {event.message}")
        elif event.action == "agent_start":
            print(f"\n[~] {event.agent}: {event.message or 'started'}")
        else:
            seconds = (event.duration_ms or 0) / 1000
            print(f"  [+] {event.agent} done ({seconds:.1f}s)")

    elif event_type == "search_status":
        print(f"  [{event.status}] {event.source}")

    elif event_type == "requirement":
        marker = "*" if event.depth > 1 else "-"
        print(f"  {marker} {event.item}")

    elif event_type == "thinking":
        print(".", end="", flush=True)

    elif event_type == "document_read":
        print(f"  [doc] {event.doc} ({event.language})")

    elif event_type in ("cross_lingual", "forensic"):
        print(f"  [!] {event.severity}: {event.finding}")

    elif event_type == "narrative":
        print(f"  Narrative: {event.assessment} ({event.issues} issues)")

    elif event_type == "recommendation":
        print(f"  [{event.priority}] {event.action}")

    elif event_type == "assessment":
        print(f"\n[*] Assessment: {event.overall}")

    elif event_type == "complete":
        requirements = event.data.requirements
        if requirements:
            print(f"\n[*] {requirements.visa_type}: {len(requirements.items)} requirements")

    elif event_type == "error":
        print(f"\n[!] Error: {event.message}")


async def run_analysis(travel: TravelDetails, documents: list[UploadedDocument]) -> None:
    print(f"Corridor: {travel.corridor} ({travel.purpose_label}, {travel.trip_days} days)")
    print("-" * 50)

    orchestrator = AnalysisOrchestrator()
    stream = orchestrator.run(travel, documents)
    async for payload in guard_stream(stream, timeout=settings.stream_timeout_seconds, label="cli"):
        if payload == DONE:
            break
        print_event(parse_event(payload))


def main():
    parser = argparse.ArgumentParser(description="Traverse visa application analysis")
    parser.add_argument("--passport", action="append", required=True, help="Passport country (repeatable)")
    parser.add_argument("--destination", required=True, help="Destination country")
    parser.add_argument("--purpose", default="tourism", help="Travel purpose (tourism, business, ...)")
    parser.add_argument("--depart", required=True, help="Departure date (YYYY-MM-DD)")
    parser.add_argument("--return", dest="return_date", required=True, help="Return date (YYYY-MM-DD)")
    parser.add_argument("--travelers", type=int, default=1)
    parser.add_argument("--event", help="Event being attended, if any")
    parser.add_argument("--doc", action="append", default=[], type=Path, help="PNG/JPEG document (repeatable)")

    args = parser.parse_args()

    try:
        travel = TravelDetails.model_validate(
            {
                "passports": args.passport,
                "destination": args.destination,
                "purpose": args.purpose,
                "dates": {"depart": args.depart, "return": args.return_date},
                "travelers": args.travelers,
                "event": args.event,
            }
        )
        documents = [load_document(path) for path in args.doc]
    except (ValidationError, ValueError, OSError) as exc:
        print(f"[!] {exc}", file=sys.stderr)
        sys.exit(2)

    asyncio.run(run_analysis(travel, documents))


if __name__ == "__main__":
    main()
