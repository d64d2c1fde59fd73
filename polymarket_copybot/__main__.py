"""
Polymarket Copy Trading Bot
===========================

Watch a wallet's trades on Polymarket and copy its buys with independent
sizing and risk caps.

Usage:
    python -m polymarket_copybot                   # Start the bot
    python -m polymarket_copybot run               # Same
    python -m polymarket_copybot generate-creds    # Print API credentials for PRIVATE_KEY
    python -m polymarket_copybot test-creds        # Validate POLYMARKET_USER_* credentials
    python -m polymarket_copybot status            # Show configuration and balances
    python -m polymarket_copybot cancel-all        # Cancel all open orders

Configuration is read from the environment (.env supported), see config.py.
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console

from .approvals import AllowanceManager
from .auth import check_static_credentials, create_authenticated_client, generate_credentials
from .bot import run_bot
from .config import load_settings
from .logger import print_stats_table, setup_logging

logger = logging.getLogger(__name__)


def cmd_run(args, settings) -> int:
    """Start the bot"""
    try:
        asyncio.run(run_bot(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1
    return 0


def cmd_generate_creds(args, settings) -> int:
    """Derive (or create) L2 API credentials and print them"""
    try:
        generate_credentials(settings)
    except Exception as e:
        logger.error(f"Failed to generate API credentials: {e}")
        return 1
    return 0


def cmd_test_creds(args, settings) -> int:
    """Validate static API credentials"""
    try:
        return 0 if check_static_credentials(settings) else 1
    except Exception as e:
        logger.error(f"API credential validation failed: {e}")
        return 1


def cmd_status(args, settings) -> int:
    """Show configuration, wallet and balances"""
    status = {
        "target_wallet": settings.target_wallet or "NOT SET",
        "position_multiplier": settings.position_multiplier,
        "max_trade_size": settings.max_trade_size,
        "order_type": settings.order_type,
        "poll_interval_ms": settings.poll_interval_ms,
        "websocket": settings.ws_channel if settings.use_websocket else "disabled",
    }

    if settings.private_key:
        try:
            manager = AllowanceManager(settings)
            status["your_wallet"] = manager.address
            status["usdc_e_balance"] = manager.get_usdc_balance()
            status["pol_balance"] = manager.get_pol_balance()
        except Exception as e:
            logger.error(f"Could not read balances: {e}")
            print_stats_table(status, title="Copy Bot Status", console=Console())
            return 1
    else:
        status["your_wallet"] = "PRIVATE_KEY not set"

    print_stats_table(status, title="Copy Bot Status", console=Console())
    return 0


def cmd_cancel_all(args, settings) -> int:
    """Cancel every open order of this signer"""
    try:
        client, _ = create_authenticated_client(settings)
        client.cancel_all()
    except Exception as e:
        logger.error(f"Error cancelling orders: {e}")
        return 1
    logger.info("All orders cancelled")
    return 0


def main(argv=None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(
        prog="polymarket_copybot",
        description="Polymarket Copy Trading Bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--log-level", help="Console log level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--no-rich", action="store_true", help="Plain console logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    run_parser = subparsers.add_parser("run", help="Start monitoring and copy trading")
    run_parser.set_defaults(func=cmd_run)

    gen_parser = subparsers.add_parser("generate-creds", help="Print API credentials derived from PRIVATE_KEY")
    gen_parser.set_defaults(func=cmd_generate_creds)

    test_parser = subparsers.add_parser("test-creds", help="Validate POLYMARKET_USER_* credentials")
    test_parser.set_defaults(func=cmd_test_creds)

    status_parser = subparsers.add_parser("status", help="Show configuration and balances")
    status_parser.set_defaults(func=cmd_status)

    cancel_parser = subparsers.add_parser("cancel-all", help="Cancel all open orders")
    cancel_parser.set_defaults(func=cmd_cancel_all)

    args = parser.parse_args(argv)

    settings = load_settings()
    setup_logging(
        level=args.log_level or settings.log_level,
        log_file=settings.log_file or None,
        use_rich=not args.no_rich,
    )

    func = getattr(args, "func", cmd_run)
    return func(args, settings)


if __name__ == "__main__":
    sys.exit(main())
