"""Main entry point for the integration monitoring service."""

import asyncio
import logging
import signal
import sys

import structlog

from integration_monitoring.config import get_config
from integration_monitoring.service import MonitoringPipeline, build_pipeline

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(level: str = "INFO"):
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVELS.get(level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger(__name__)


async def run_service(pipeline: MonitoringPipeline):
    """Run the scheduler until SIGINT/SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    await pipeline.start()
    logger.info("Integration monitoring running",
                environment=pipeline.config.environment,
                timezone=pipeline.config.schedule.timezone)
    try:
        await stop_event.wait()
    finally:
        await pipeline.stop()


async def run_cli_command(pipeline: MonitoringPipeline, command: str, *args):
    """Run a single CLI command."""
    if command == "cycle":
        try:
            result = await pipeline.scheduler.run_slot(args[0] if args else None)
        except ValueError as e:
            print(str(e))
            print("Usage: cycle [MORNING|MIDDAY|EVENING|monthly]")
            return
        await pipeline.dispatcher.flush()
        print(f"{result['task_id']}: {'ok' if result['success'] else result.get('error')}")

    elif command == "monthly":
        if len(args) != 2:
            print("Usage: monthly YEAR MONTH")
            return
        result = await pipeline.scheduler.run_monthly_cycle(int(args[0]), int(args[1]))
        await pipeline.dispatcher.flush()
        print(f"Archived: {', '.join(result['archived']) or 'none'}")
        for provider, error in result["failed"].items():
            print(f"Failed {provider}: {error}")

    elif command == "bill":
        if len(args) != 2:
            print("Usage: bill PROVIDER ERROR_COUNT")
            return
        bill = pipeline.compute_bill(args[0], int(args[1]))
        symbol = pipeline.config.billing.currency_symbol
        for charge in bill.breakdown:
            print(f"{charge.tier}: {charge.errors:,} x {symbol}{charge.rate} = {symbol}{charge.cost:,.2f}")
        print(f"Total for {bill.provider}: {symbol}{bill.total_cost:,.2f}")

    elif command == "status":
        summary = await pipeline.generator.generate_status_report()
        print(f"Units: {summary.active_units} active of {summary.total_units}")
        for unit in summary.deactivated_units:
            print(f"  {unit.unit_number} {unit.resident_name}: {unit.days_deactivated} days")

    else:
        print(f"Unknown command: {command}")
        print("Available commands: cycle [SLOT], monthly YEAR MONTH, bill PROVIDER COUNT, status")


async def _run(args):
    config = get_config()
    configure_logging(config.log_level)
    pipeline = build_pipeline(config)

    if not args:
        await run_service(pipeline)
    else:
        await run_cli_command(pipeline, args[0], *args[1:])


def main():
    """Main entry point with argument handling."""
    asyncio.run(_run(sys.argv[1:]))


if __name__ == "__main__":
    main()
