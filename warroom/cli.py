"""Terminal war room: chat REPL over a mounted dashboard session.

Usage:
    python -m warroom.cli

Anything typed is treated as an incident report. Commands:
    /action <id>   run a remediation action (rollback, restart, ...)
    /demo          simulate a payment service failure
    /spike         simulate a traffic surge
    /status        show the dashboard state
    quit           exit
"""

import asyncio
import logging

from warroom.config import get_settings
from warroom.dashboard.session import DashboardSession
from warroom.store.factory import get_store

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


def _print_status(session: DashboardSession) -> None:
    snap = session.snapshot()
    print(f"\nState: {snap.state} ({snap.store} store)")
    if snap.analysis is not None:
        print(f"Incident: {snap.analysis.type} on {snap.analysis.service or 'unknown service'} [{snap.analysis.severity}]")
        for widget in snap.analysis.widgets:
            print(f"  - {widget.component_name}: {widget.reason}")
        if snap.analysis.suggested_actions:
            print(f"Actions: {', '.join(snap.analysis.suggested_actions)}")
    if snap.recovery is not None:
        print(f"Recovered after {snap.recovery.duration_seconds or 0:.0f}s")
    for service in snap.services:
        print(f"  {service.name:<20} {service.status}")
    print()


async def _run() -> None:
    session = DashboardSession(get_store(), get_settings())
    await session.mount()
    print(f"War Room on {session.store.name} store (type 'quit' or Ctrl+C to exit)")
    print("=" * 50)

    seen = len(session.transcript)
    try:
        while True:
            try:
                line = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break

            if not line:
                continue
            if line.lower() in ("quit", "exit", "q"):
                print("Goodbye!")
                break

            if line == "/status":
                _print_status(session)
            elif line == "/demo":
                await session.trigger_demo_incident()
            elif line == "/spike":
                await session.trigger_traffic_spike()
            elif line.startswith("/action"):
                _, _, action = line.partition(" ")
                if not action.strip():
                    print("Usage: /action <id>")
                    continue
                await session.run_action(action.strip())
            else:
                await session.submit_report(line)

            # Let realtime handlers catch up before echoing the transcript
            await asyncio.sleep(0)
            for message in session.transcript.messages[seen:]:
                if message.role != "user":
                    print(f"{message.role.title()}: {message.content}")
            seen = len(session.transcript)
    finally:
        await session.unmount()
        await session.store.close()


def main() -> None:
    """Run the interactive CLI loop."""
    asyncio.run(_run())


if __name__ == "__main__":
    main()
