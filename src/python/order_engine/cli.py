#!/usr/bin/env python3
"""
DEX Order Execution Engine - Command Line Interface

Usage:
    order-engine serve [--host <host>] [--port <port>] [--no-worker] [--config <file>]
    order-engine worker [--config <file>]
    order-engine submit --token-in <sym> --token-out <sym> --amount <n> [--wallet <addr>]
    order-engine history <order_id> [--config <file>]
    order-engine orders [--limit <n>] [--config <file>]
    order-engine failed-jobs [--config <file>]
    order-engine config [--show | --generate <file>]
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

from .config import Config, load_config


def setup_logging(verbose: bool = False, debug: bool = False, config: Optional[Config] = None):
    """Setup logging for CLI."""
    from .monitoring.logging import configure_logging

    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    elif config is not None:
        level = config.logging.level
    else:
        level = logging.WARNING

    json_output = config.logging.json_output if config is not None else False
    configure_logging(level=level, json_output=json_output)


def _format_event(event: Dict[str, Any]) -> str:
    detail = json.dumps(event.get("detail")) if event.get("detail") is not None else ""
    return f"  {event['timestamp']}  {event['status']:<10} {detail}"


def _is_final(event: Dict[str, Any], max_attempts: int) -> bool:
    if event["status"] == "confirmed":
        return True
    if event["status"] == "failed":
        attempt = (event.get("detail") or {}).get("attempt", max_attempts)
        return attempt >= max_attempts
    return False


def cmd_serve(args):
    """Run the HTTP/WebSocket API."""
    from .api import run_server
    from .monitoring import bind, clear_context

    config = load_config(args.config)
    setup_logging(args.verbose, args.debug, config)

    if args.port:
        config.server.port = args.port
    if args.host:
        config.server.host = args.host

    print(f"Serving on http://{config.server.host}:{config.server.port} "
          f"(worker {'off' if args.no_worker else 'embedded'})")
    bind(process="api", port=config.server.port)
    try:
        run_server(config, run_worker=not args.no_worker)
    finally:
        clear_context()
    return 0


async def _run_worker(config: Config) -> None:
    from .engine import OrderEngine
    from .monitoring import bind

    # Inherited by every task the engine starts
    bind(process="worker", queue=config.queue.name)
    engine = OrderEngine(config)
    await engine.start(run_worker=True)
    try:
        await asyncio.Event().wait()
    finally:
        await engine.stop()


def cmd_worker(args):
    """Run a standalone job consumer."""
    config = load_config(args.config)
    setup_logging(args.verbose, args.debug, config)

    if config.queue.backend != "redis":
        print("Warning: queue backend is 'memory'; a standalone worker only sees its own jobs. "
              "Set ORDER_QUEUE_BACKEND=redis to share the queue with API servers.")

    print(f"Worker consuming '{config.queue.name}' with concurrency {config.queue.concurrency}")
    asyncio.run(_run_worker(config))
    return 0


async def _submit_and_follow(config: Config, payload: Dict[str, Any], run_worker: bool, timeout: float) -> int:
    from .engine import OrderEngine

    engine = OrderEngine(config)
    await engine.start(run_worker=run_worker)
    try:
        order = await engine.service.submit_order(payload)
        print(f"Order {order.order_id} accepted at {order.created_at.isoformat()}")

        stream = engine.service.watch(order.order_id)
        final: Optional[Dict[str, Any]] = None

        async def follow() -> None:
            nonlocal final
            async for message in stream:
                events = message["data"] if message["type"] == "history" else [message["data"]]
                for event in events:
                    print(_format_event(event))
                    if _is_final(event, config.queue.max_attempts):
                        final = event
                        return

        try:
            await asyncio.wait_for(follow(), timeout=timeout)
        except asyncio.TimeoutError:
            print(f"No final status after {timeout:g}s")
            return 1
        finally:
            await stream.aclose()

        if final["status"] == "confirmed":
            detail = final["detail"]
            print(f"\nConfirmed on {detail['dex']}: {detail['outputAmount']:.6f} {order.token_out} "
                  f"at {detail['executedPrice']:.8f} (tx {detail['txHash'][:16]}...)")
            return 0

        print(f"\nFailed: {final['detail'].get('reason')}")
        return 1
    finally:
        await engine.stop()


def cmd_submit(args):
    """Submit an order and print its status stream."""
    config = load_config(args.config)
    setup_logging(args.verbose, args.debug, config)

    payload = {"tokenIn": args.token_in, "tokenOut": args.token_out, "amount": args.amount}
    if args.wallet:
        payload["wallet"] = args.wallet

    return asyncio.run(_submit_and_follow(config, payload, not args.no_worker, args.timeout))


def cmd_history(args):
    """Print an order's status history."""
    from .engine import build_store

    config = load_config(args.config)
    setup_logging(args.verbose, args.debug, config)
    if config.database.backend == "memory":
        print("Note: memory store is per-process; set DATABASE_URL to read persisted history.")

    store = build_store(config)
    try:
        history = store.get_history(args.order_id)
    finally:
        store.close()

    if not history:
        print(f"No history for {args.order_id}")
        return 1

    if args.json:
        print(json.dumps([e.to_dict() for e in history], indent=2, default=str))
        return 0

    print(f"\nOrder {args.order_id}")
    for event in history:
        print(_format_event(event.to_dict()))
    return 0


def cmd_orders(args):
    """List recent orders."""
    from .engine import build_store

    config = load_config(args.config)
    setup_logging(args.verbose, args.debug, config)

    store = build_store(config)
    try:
        orders = store.list_orders(args.limit)
    finally:
        store.close()

    print(f"\n{'='*60}")
    print(f"RECENT ORDERS ({len(orders)})")
    print(f"{'='*60}\n")
    for order in orders:
        print(f"{order.created_at.isoformat()}  {order.order_id}  "
              f"{order.amount:g} {order.token_in} -> {order.token_out}")
    return 0


async def _failed_jobs(config: Config):
    from .engine import build_queue

    queue = build_queue(config)
    try:
        return await queue.failed_jobs()
    finally:
        await queue.close()


def cmd_failed_jobs(args):
    """List jobs that exhausted their attempts."""
    config = load_config(args.config)
    setup_logging(args.verbose, args.debug, config)

    jobs = asyncio.run(_failed_jobs(config))
    if not jobs:
        print("No failed jobs")
        return 0

    for job in jobs:
        print(f"{job.job_id}  order={job.order_id}  attempts={job.attempts_made}/{job.max_attempts}  "
              f"error={job.last_error}")
    return 0


def cmd_config(args):
    """Manage configuration."""
    if args.generate:
        config = Config()
        config.save(args.generate)
        print(f"Configuration template saved to: {args.generate}")
        return 0

    if args.show:
        config = load_config(args.config_file)
        print(json.dumps(config.to_dict(), indent=2))
        return 0

    # Default: show config help
    print("Configuration management:")
    print("  --show          Show current configuration")
    print("  --generate FILE Generate configuration template")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="order-engine",
        description="DEX Order Execution Engine - routes market swaps across Raydium and Meteora",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API with an embedded worker
  order-engine serve --port 4000

  # API and workers in separate processes sharing Redis
  REDIS_URL=redis://localhost:6379 ORDER_QUEUE_BACKEND=redis order-engine serve --no-worker
  REDIS_URL=redis://localhost:6379 ORDER_QUEUE_BACKEND=redis order-engine worker

  # Submit a swap and follow it to completion
  order-engine submit --token-in SOL --token-out USDC --amount 1.5

  # Inspect persisted orders
  DATABASE_URL=sqlite:///orders.db order-engine orders --limit 10

  # Generate config template
  order-engine config --generate config.yaml
        """
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--debug", action="store_true", help="Debug output")
    parser.add_argument("--version", action="version", version="%(prog)s 1.0.0")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP/WebSocket API")
    serve_parser.add_argument("--host", help="Bind address (default: config)")
    serve_parser.add_argument("--port", "-p", type=int, help="Port (default: config, env PORT)")
    serve_parser.add_argument("--no-worker", action="store_true", help="Do not process jobs in this process")
    serve_parser.add_argument("--config", "-c", help="Config file")

    # Worker command
    worker_parser = subparsers.add_parser("worker", help="Run a standalone job consumer")
    worker_parser.add_argument("--config", "-c", help="Config file")

    # Submit command
    submit_parser = subparsers.add_parser("submit", help="Submit an order and follow its status")
    submit_parser.add_argument("--token-in", required=True, help="Token to sell")
    submit_parser.add_argument("--token-out", required=True, help="Token to buy")
    submit_parser.add_argument("--amount", required=True, type=float, help="Amount of token-in")
    submit_parser.add_argument("--wallet", help="Destination wallet")
    submit_parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait (default: 60)")
    submit_parser.add_argument("--no-worker", action="store_true",
                               help="Rely on external workers (redis queue)")
    submit_parser.add_argument("--config", "-c", help="Config file")

    # History command
    history_parser = subparsers.add_parser("history", help="Show an order's status history")
    history_parser.add_argument("order_id", help="Order id")
    history_parser.add_argument("--json", action="store_true", help="Print raw JSON")
    history_parser.add_argument("--config", "-c", help="Config file")

    # Orders command
    orders_parser = subparsers.add_parser("orders", help="List recent orders")
    orders_parser.add_argument("--limit", "-n", type=int, default=20, help="Max orders (default: 20)")
    orders_parser.add_argument("--config", "-c", help="Config file")

    # Failed jobs command
    failed_parser = subparsers.add_parser("failed-jobs", help="List jobs that exhausted retries")
    failed_parser.add_argument("--config", "-c", help="Config file")

    # Config command
    config_parser = subparsers.add_parser("config", help="Manage configuration")
    config_parser.add_argument("--show", action="store_true", help="Show current config")
    config_parser.add_argument("--generate", metavar="FILE", help="Generate config template")
    config_parser.add_argument("--config-file", "-c", help="Config file to show")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "serve": cmd_serve,
        "worker": cmd_worker,
        "submit": cmd_submit,
        "history": cmd_history,
        "orders": cmd_orders,
        "failed-jobs": cmd_failed_jobs,
        "config": cmd_config,
    }

    try:
        return commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        if args.debug:
            raise
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
