#!/usr/bin/env python3
import argparse
import asyncio
import logging
import sys


def parse_args(argv=None) -> argparse.Namespace:
    argv = sys.argv[1:] if argv is None else list(argv)
    p = argparse.ArgumentParser(
        prog="squaretickets",
        description="Ticket sales reconciled against Square invoices",
    )
    p.add_argument("--log-level", default="info",
                   choices=["debug", "info", "warning", "error"])
    sub = p.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="run the web app and the poller")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8383)

    sub.add_parser("reconcile",
                   help="run a single reconciliation cycle and exit")
    sub.add_parser("sync-lists",
                   help="rebuild the everyone/unpaid mailgun lists")

    args = p.parse_args(argv)
    if args.command is None:
        args = p.parse_args(argv + ["serve"])
    return args


async def run_once() -> int:
    # deferred: importing the server builds the engine from DATABASE_URL
    from .mail import new_mailer
    from .model.db import create_schema
    from .server import engine, new_reconciler
    import httpx

    await create_schema(engine)
    async with httpx.AsyncClient() as http:
        report = await new_reconciler(new_mailer(http=http)).run_cycle()
    await engine.dispose()
    print(f"invoices: {report.invoices_seen}")
    for pr_id, status in sorted(report.statuses.items()):
        print(f"  PurchaseRequest {pr_id}: {status}")
    if report.error is not None:
        print(f"cycle aborted: {report.error}")
        return 1
    return 0


async def run_sync_lists() -> int:
    from . import config
    from .errors import SquareTicketsError
    from .mail import MailgunMailer
    from .mailinglists import sync_mailing_lists
    from .model.store import TicketStore
    from .server import SessionAsync, engine, gated, square_connector
    import httpx

    if not config.MAILGUN_API_KEY:
        print("sync-lists needs MAILGUN_API_KEY")
        return 2
    try:
        async with httpx.AsyncClient(timeout=30) as http, \
                SessionAsync() as db:
            mailgun = MailgunMailer(
                http, domain=config.MAILGUN_DOMAIN,
                api_key=config.MAILGUN_API_KEY, sender=config.MAIL_SENDER,
            )
            counts = await sync_mailing_lists(
                TicketStore(db=db, gated=gated), square_connector(), mailgun
            )
    except SquareTicketsError as e:
        print(f"sync failed: {e}")
        return 1
    finally:
        await engine.dispose()
    for address, n in sorted(counts.items()):
        print(f"  {address}: {n}")
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "reconcile":
        return asyncio.run(run_once())
    if args.command == "sync-lists":
        return asyncio.run(run_sync_lists())

    import uvicorn
    uvicorn.run("squaretickets.server:app", host=args.host, port=args.port,
                log_level=args.log_level)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
