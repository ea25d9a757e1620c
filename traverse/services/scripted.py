"""Fixed event sequence played back for ``test: true`` requests.

Exercises every client-side event handler without touching the reasoning
backend. Delays are multiplied by ``settings.scripted_delay_scale``.
"""
from __future__ import annotations

import asyncio
from typing import AsyncGenerator

from traverse.config import settings
from traverse.models.domain import ApplicationAssessment, NarrativeStrength, Severity
from traverse.models.events import (
    BaseEvent,
    CrossLingualEvent,
    ForensicEvent,
    NarrativeEvent,
    RecommendationEvent,
    RequirementEvent,
    SearchState,
)
from traverse.services import streaming

RESEARCH = "research"
DOCUMENT = "document"
ADVISORY = "advisory"


async def _delay(ms: int) -> None:
    scaled = ms * settings.scripted_delay_scale
    if scaled > 0:
        await asyncio.sleep(scaled / 1000)


def _requirement(name: str, *, depth: int = 1) -> BaseEvent:
    return RequirementEvent(item=name, depth=depth)


def _recommendation(severity: Severity, action: str) -> BaseEvent:
    return RecommendationEvent(priority=severity, action=action)


async def scripted_analysis() -> AsyncGenerator[BaseEvent, None]:
    yield streaming.planning("3 agents planned for this analysis")
    await _delay(500)

    yield streaming.agent_started(RESEARCH)
    await _delay(300)
    for source, wait in (("auswaertiges-amt.de", 800), ("vfs-global.com", 600)):
        yield streaming.search_status(source, SearchState.SEARCHING)
        await _delay(wait)
        yield streaming.search_status(source, SearchState.FOUND)
        await _delay(200)

    yield _requirement("Passport validity: 6+ months beyond return date")
    await _delay(300)
    yield _requirement("2 biometric photos (35x45mm, white background)")
    await _delay(300)
    yield _requirement("Bank statements (6 months)")
    await _delay(200)

    yield streaming.thinking_depth(RESEARCH, 8400, 16000)
    yield streaming.thinking(
        RESEARCH,
        "Multiple sources disagree on bank statement duration. Federal Foreign Office (2025) says "
        "6 months, Embassy Delhi (2023) says 3 months. Resolving by authority and recency: "
        "6 months is correct.",
    )
    await _delay(500)
    yield _requirement("Financial proof: 6 months bank statements, €45/day minimum", depth=5)
    await _delay(300)
    yield streaming.agent_completed(RESEARCH, duration_ms=14200)
    await _delay(500)

    yield streaming.agent_started(DOCUMENT)
    await _delay(300)
    for doc, language, doc_type, wait in (
        ("Passport", "English", "passport", 400),
        ("Bank Statement", "Hindi", "bank_statement", 600),
        ("Employment Letter", "Hindi", "employment_letter", 500),
        ("Cover Letter", "English", "cover_letter", 400),
    ):
        yield streaming.document_read(doc, language, doc_type=doc_type)
        await _delay(wait)

    yield streaming.thinking_depth(DOCUMENT, 14200, 16000)
    yield streaming.thinking(
        DOCUMENT,
        'Hindi employment letter (Doc 3): "स्थायी कर्मचारी" = permanent employee, ₹85,000/month. '
        'English cover letter (Doc 4): "contract consultant," ₹60,000/month. These are contradictory; '
        "an embassy officer who reads Hindi will catch this.",
    )
    await _delay(300)
    yield CrossLingualEvent(
        finding=(
            "Employment status contradiction: Hindi letter says 'permanent employee' (₹85,000/mo), "
            "English cover letter says 'contract consultant' (₹60,000/mo)"
        ),
        severity=Severity.CRITICAL,
        details="An embassy officer who reads Hindi will catch this inconsistency.",
    )
    await _delay(400)
    yield ForensicEvent(
        finding="Conference invitation sent from Gmail address (easummit2026@gmail.com)",
        severity=Severity.WARNING,
        details="Professional conferences use official domains. Gmail suggests informal or fabricated invitation.",
    )
    await _delay(300)
    yield NarrativeEvent(
        assessment=NarrativeStrength.WEAK,
        issues=3,
        details="3-day conference with 15-day trip, Gmail invitation, low savings ratio",
    )
    await _delay(300)
    yield streaming.agent_completed(DOCUMENT, duration_ms=32100)
    await _delay(500)

    yield streaming.agent_started(ADVISORY)
    await _delay(300)
    yield _recommendation(
        Severity.CRITICAL,
        "Fix cover letter: change role to 'Permanent Senior Software Engineer' and salary to "
        "'₹85,000/month' to match Hindi employment letter",
    )
    await _delay(300)
    yield _recommendation(
        Severity.CRITICAL,
        "Get official conference invitation on conference letterhead from an official domain "
        "(e.g., @esas-conference.org)",
    )
    await _delay(300)
    yield _recommendation(
        Severity.WARNING,
        "Add a day-by-day itinerary explaining the 12 days beyond the conference "
        "(tourism, business meetings, etc.)",
    )
    await _delay(300)
    yield streaming.assessment(ApplicationAssessment.ADDITIONAL_DOCUMENTS_NEEDED)
    await _delay(200)
    yield streaming.agent_completed(ADVISORY, duration_ms=11500)

    yield streaming.complete()
