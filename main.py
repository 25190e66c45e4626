"""Council Client - multi-model council orchestration

Simple CLI for asking the council a question and browsing past sessions.
"""

import argparse
import asyncio
import sys

from council_client.errors import CouncilClientError
from council_client.orchestrator import CouncilOrchestrator
from council_client.services.controller import SessionObservers


def print_event(event) -> None:
    event_type = event.type.value

    if event_type == "start":
        print(f"[*] Session started: {event.trace_id or 'pending trace id'}")
        if event.business:
            print(f"    Business: {event.business}")

    elif event_type == "generating_brief":
        print("\n[~] Generating research brief...")

    elif event_type == "brief_ready":
        print("  [+] Brief ready")

    elif event_type == "dispatching":
        print(f"\n[~] Dispatching to council: {', '.join(event.members) or 'all members'}")

    elif event_type == "council_response":
        name = event.member_name or event.member_id
        print(f"  [+] {name} responded ({event.elapsed_ms}ms)")

    elif event_type == "council_error":
        name = event.member_name or event.member_id
        print(f"  [-] {name} failed: {event.error}")

    elif event_type == "synthesizing":
        print("\n[+] Synthesizing...")

    elif event_type == "error":
        print(f"\n[!] Error: {event.error}")


def print_session(session) -> None:
    print(f"\n{'='*50}")
    print(f"Session {session.key} [{session.status.value}]")
    print(f"Question: {session.question}")
    print(f"{'='*50}")

    for result in session.responses.values():
        name = result.member_name or result.member_id
        if result.succeeded:
            print(f"\n--- {name} ({result.elapsed_ms}ms) ---")
            print(result.content)
        else:
            print(f"\n--- {name} (failed) ---")
            print(result.error)

    if session.error:
        print(f"\n[!] Session failed: {session.error}")
        return

    print(f"\n{'='*50}")
    print("SYNTHESIS:")
    print(f"{'='*50}")
    print(session.synthesis or "")
    if session.meta:
        meta = session.meta
        print(f"\n   Runtime: {meta.total_time_ms}ms")
        print(f"   Cost: ${meta.total_cost:.4f}")
        print(f"   Members: {meta.success_count} succeeded, {meta.fail_count} failed")


async def run_question(question: str, stream: bool) -> int:
    """Ask the council ``question`` and print progress as it arrives."""
    print(f"Question: {question}")
    print("-" * 50)

    orchestrator = CouncilOrchestrator(stream_enabled=stream)
    observers = SessionObservers(on_event=print_event)
    session = await orchestrator.ask(question, observers)
    print_session(session)
    return 0 if session.status.value == "complete" else 1


async def run_history() -> int:
    orchestrator = CouncilOrchestrator()
    summaries = await orchestrator.history.refresh()
    if not summaries:
        print("No sessions found.")
        return 0
    for summary in summaries:
        cost = f"${summary.total_cost:.4f}" if summary.total_cost is not None else "-"
        time_ms = f"{summary.total_time_ms}ms" if summary.total_time_ms is not None else "-"
        print(f"{summary.trace_id}  {time_ms:>9}  {cost:>9}  {summary.question[:60]}")
    return 0


async def run_load(trace_id: str) -> int:
    orchestrator = CouncilOrchestrator()
    session = await orchestrator.history.load(trace_id)
    print_session(session)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Council Client - multi-model orchestration")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--question", "-q", help="Question to put to the council")
    group.add_argument("--history", action="store_true", help="List recent sessions")
    group.add_argument("--session", metavar="TRACE_ID", help="Show a stored session")
    parser.add_argument("--no-stream", action="store_true", help="Use the single request endpoint")

    args = parser.parse_args()

    try:
        if args.history:
            code = asyncio.run(run_history())
        elif args.session:
            code = asyncio.run(run_load(args.session))
        else:
            code = asyncio.run(run_question(args.question, stream=not args.no_stream))
    except CouncilClientError as e:
        print(f"[!] {e}", file=sys.stderr)
        code = 1
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
