"""casesync Command Line Interface.

Provides operational tools for:
- Showing the resolved remote configuration (secrets masked)
- Running one resync
- Listing and acknowledging reconciliation alerts

Usage:
    casesync resolve
    casesync sync
    casesync sync --endpoint http://localhost:8000/api/sync
    casesync alerts --json
    casesync acknowledge <outcome-id>
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable
from uuid import UUID

from casesync.config import Settings, get_settings
from casesync.services import Services, close_services, open_services
from casesync.sync import HttpSyncTrigger, SyncConfig, SyncEngine


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class CaseSyncCli:
    """casesync Command Line Interface."""

    def __init__(
        self,
        settings: Settings | None = None,
        services: Services | None = None,
    ) -> None:
        self.settings = settings
        self.services = services
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="casesync",
            description="Case-management sync and payment reconciliation tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        resolve = subparsers.add_parser(
            "resolve",
            help="Show the resolved remote configuration",
        )
        resolve.add_argument("--json", action="store_true", help="Output as JSON")

        sync = subparsers.add_parser("sync", help="Run one resync")
        sync.add_argument(
            "--endpoint",
            type=str,
            help="Trigger the resync through this sync endpoint instead of in-process",
        )
        sync.add_argument("--json", action="store_true", help="Output as JSON")

        alerts = subparsers.add_parser(
            "alerts",
            help="List payments needing manual reconciliation",
        )
        alerts.add_argument("--json", action="store_true", help="Output as JSON")

        ack = subparsers.add_parser(
            "acknowledge",
            help="Mark a reconciliation alert resolved",
        )
        ack.add_argument("outcome_id", type=parse_uuid, help="Outcome ID from 'alerts'")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[Services, argparse.Namespace], Awaitable[int]]] = {
            "resolve": self._cmd_resolve,
            "sync": self._cmd_sync,
            "alerts": self._cmd_alerts,
            "acknowledge": self._cmd_acknowledge,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(self._dispatch(handler, parsed))
        except Exception as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    async def _dispatch(
        self,
        handler: Callable[[Services, argparse.Namespace], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        if self.services is not None:
            return await handler(self.services, args)
        services = await open_services(self.settings or get_settings())
        try:
            return await handler(services, args)
        finally:
            await close_services(services)

    async def _cmd_resolve(self, services: Services, args: argparse.Namespace) -> int:
        """Show resolved configuration."""
        descriptor = await services.resolver.resolve()
        payment = await services.resolver.resolve_payment_processor()
        if args.json:
            _print_json({"servemanager": descriptor.masked(), "stripe": payment.masked()})
            return 0

        print("ServeManager")
        print(f"  Enabled:  {descriptor.enabled}")
        print(f"  Source:   {descriptor.source}")
        print(f"  Base URL: {descriptor.base_url or '-'}")
        print(f"  API key:  {descriptor.masked()['apiKey'] or '-'}")
        print("Stripe")
        print(f"  Enabled:     {payment.enabled}")
        print(f"  Source:      {payment.source}")
        print(f"  Environment: {payment.environment}")
        return 0

    async def _cmd_sync(self, services: Services, args: argparse.Namespace) -> int:
        """Run one resync."""
        if args.endpoint:
            engine = SyncEngine(
                HttpSyncTrigger(args.endpoint),
                config=SyncConfig.from_settings(services.settings),
            )
            ok = await engine.manual_sync()
            status = engine.status
            if args.json:
                _print_json(status.to_dict())
            elif ok:
                print(f"Resync via {args.endpoint} succeeded at {status.last_sync}")
            else:
                print(f"Resync failed ({status.error.value if status.error else 'unknown'}): "
                      f"{status.error_detail}")
            return 0 if ok else 1

        summary = await services.refresher.refresh()
        if args.json:
            _print_json(summary.to_dict())
        else:
            for name, result in summary.results.items():
                line = f"  {name:<10} {result.fetched:>6} record(s)"
                if result.truncated:
                    line += " (page limit reached)"
                if result.error:
                    line = f"  {name:<10} FAILED: {result.error}"
                print(line)
            print(f"Total: {summary.total_records} record(s)")
        return 1 if summary.all_failed else 0

    async def _cmd_alerts(self, services: Services, args: argparse.Namespace) -> int:
        """List open reconciliation alerts."""
        outcomes = await services.outcomes.requiring_attention()
        if args.json:
            _print_json([o.to_dict() for o in outcomes])
            return 0

        if not outcomes:
            print("No open reconciliation alerts.")
            return 0
        print(f"{len(outcomes)} payment(s) need manual reconciliation:")
        for o in outcomes:
            print(
                f"  {o.outcome_id}  invoice {o.invoice_id}  {o.amount}  "
                f"ref {o.payment_reference}  {o.timestamp.isoformat()}"
            )
            if o.error:
                print(f"      {o.error}")
        return 0

    async def _cmd_acknowledge(self, services: Services, args: argparse.Namespace) -> int:
        """Acknowledge an alert."""
        if await services.outcomes.acknowledge(args.outcome_id):
            print(f"Acknowledged {args.outcome_id}")
            return 0
        print(f"No open alert {args.outcome_id}", file=sys.stderr)
        return 1


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def main() -> int:
    """CLI entry point."""
    cli = CaseSyncCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
