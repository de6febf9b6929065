"""DeepResearch - command line runner.

Runs one research task against in-memory identity, store and ledger, using
the configured LLM and search/scrape providers.
"""

import argparse
import asyncio

from deepresearch.agents.orchestrator import ResearchOrchestrator, ResearchServices, stream_research
from deepresearch.config import settings
from deepresearch.services.input_validation import SUPPORTED_DOMAINS
from deepresearch.services.task_store import InMemoryResearchStore
from deepresearch.tools.firecrawl import DiscoveryClient, ScrapeClient
from deepresearch.tools.search_provider import SearchClient

CLI_TOKEN = "cli"
CLI_USER = "cli-user"


async def run_research(query: str, model: str | None = None, domain: str = "all", balance: int = 100) -> int:
    """Run research on the given query; returns a process exit code."""
    print(f"Research query: {query}")
    print("-" * 50)

    store = InMemoryResearchStore(tokens={CLI_TOKEN: CLI_USER}, balances={CLI_USER: balance})
    services = ResearchServices(
        identity=store,
        store=store,
        ledger=store,
        search=SearchClient(settings),
        scraper=ScrapeClient(settings),
        discovery=DiscoveryClient(settings),
    )
    orchestrator = ResearchOrchestrator(services)
    request = {"query": query, "model": model, "domain": domain}

    exit_code = 1
    generating = False
    async for event in stream_research(orchestrator, request, token=CLI_TOKEN):
        data = event.data
        phase = event.phase.value

        if "content" in data:
            if not generating:
                print(f"\n{'=' * 50}\nREPORT:\n{'=' * 50}")
                generating = True
            print(data["content"], end="", flush=True)

        elif phase == "completed":
            print("\n\n[*] Research Complete!")
            print(f"   Sources: {data.get('sourceCount')}")
            print(f"   Credits: {data.get('creditsUsed')}")
            print(f"   Confidence: {data.get('confidence')}  Coverage: {data.get('coverage')}")
            print(f"   Runtime: {data.get('runtimeMs')}ms")
            exit_code = 0

        elif phase == "failed":
            print(f"\n[!] Failed: {data.get('error', 'Unknown error')}")
            if data.get("insufficientCredits"):
                print(f"   Balance {data.get('currentBalance')}, required {data.get('requiredCredits')}")

        elif phase == "planning" and "expectedFormat" in data:
            print(f"\n[*] {data.get('message')} - format: {data.get('expectedFormat')}")

        else:
            print(f"[~] {phase}: {data.get('message', '')}")

    return exit_code


def main():
    parser = argparse.ArgumentParser(description="DeepResearch - budgeted deep research")
    parser.add_argument("--query", "-q", required=True, help="Research query")
    parser.add_argument("--model", "-m", help="grok-4-latest or gpt-4.1 (default: from config)")
    parser.add_argument("--domain", "-d", default="all", choices=SUPPORTED_DOMAINS, help="Domain focus")
    parser.add_argument("--balance", "-b", type=int, default=100, help="Credit balance for this run")

    args = parser.parse_args()

    raise SystemExit(asyncio.run(run_research(args.query, args.model, args.domain, args.balance)))


if __name__ == "__main__":
    main()
