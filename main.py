"""Competitor Intel - competitor research CLI

Runs the research pipeline for one company and prints the report.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from competitor_intel.agents.orchestrator import ResearchOrchestrator
from competitor_intel.models.research import BusinessContext, CompetitorDescriptor, ResearchOptions


async def run_research(args: argparse.Namespace) -> int:
    """Stream progress for one competitor, then print or save the report."""
    competitor = CompetitorDescriptor(
        name=args.name,
        website=args.website,
        description=args.description,
    )
    business_context = BusinessContext(industry=args.industry) if args.industry else None
    orchestrator = ResearchOrchestrator(
        options=ResearchOptions(skip_website_scraping=args.skip_website),
    )

    print(f"Researching: {competitor.name}")
    print("-" * 50)

    payload: dict = {}
    async for event in orchestrator.stream(competitor, business_context):
        event_type = event.event.value
        data = event.data

        if event_type == "status":
            print(f"[~] {event.step}: {event.message}")

        elif event_type == "progress":
            print(f"[+] {event.message} ({event.progress}%)")

        elif event_type == "query_generated":
            queries = data.get("queries", [])
            print(f"\n[*] {data.get('category', '')} queries ({len(queries)}):")
            for i, query in enumerate(queries, 1):
                print(f"  {i}. {query[:80]}")

        elif event_type == "documents_found":
            print(f"  [+] {event.message}")

        elif event_type == "content_extracted":
            print(f"  [+] {event.message}")

        elif event_type == "briefing_generated":
            print(f"  [+] {event.message} ({data.get('length', 0)} chars)")

        elif event_type == "report_chunk":
            print(".", end="", flush=True)

        elif event_type == "error":
            print(f"\n[!] Error: {event.message}")

        elif event_type == "result":
            payload = data

    if not payload.get("success"):
        print(f"\n[!] Research failed: {payload.get('error', 'Unknown error')}")
        return 1

    metadata = payload.get("metadata", {})
    print("\n\n[*] Research Complete!")
    print(f"   Duration: {metadata.get('duration')}s")
    print(f"   Documents: {metadata.get('total_documents')}")
    print(f"   Estimated cost: ${metadata.get('cost_estimate', 0):.4f}")
    print(f"   Sources: {len(metadata.get('sources_used', []))}")

    if args.output:
        output = Path(args.output)
        if output.suffix == ".json":
            output.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
        else:
            output.write_text(payload.get("report", ""), encoding="utf-8")
        print(f"   Saved to: {output}")
        return 0

    print(f"\n{'='*50}")
    print("REPORT:")
    print(f"{'='*50}")
    print(payload.get("report", ""))
    return 0


def main():
    parser = argparse.ArgumentParser(description="Competitor Intel research tool")
    parser.add_argument("--name", "-n", required=True, help="Competitor name")
    parser.add_argument("--website", "-w", help="Competitor website")
    parser.add_argument("--description", "-d", help="Short description of the competitor")
    parser.add_argument("--industry", "-i", help="Known industry (skips detection)")
    parser.add_argument(
        "--skip-website", action="store_true", help="Do not scrape the competitor website"
    )
    parser.add_argument("--output", "-o", help="Write the report (.md) or full result (.json) here")

    args = parser.parse_args()

    sys.exit(asyncio.run(run_research(args)))


if __name__ == "__main__":
    main()
