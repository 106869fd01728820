"""FractalWatch — application entry point.

Boots the FastAPI read API and provides the CLI entry point for the
refresh, scan, run, serve, dedup and report modes.
"""

import logging

from fastapi import FastAPI

from fractalwatch.api.routers import router

app = FastAPI(title="FractalWatch API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("fractalwatch")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


# ── Wiring ───────────────────────────────────────────────────────────────


def build_engine(config):
    """Create the repositories, feed and engine for *config*.

    The database schema is applied first.
    """
    from fractalwatch.engine import FractalEngine
    from fractalwatch.feeds import JsonFileFeed
    from fractalwatch.repos.db import init_db
    from fractalwatch.repos.event_repo import BreakoutEventRepo
    from fractalwatch.repos.fractal_repo import FractalRepo
    from fractalwatch.repos.reaction_repo import ReactionRepo
    from fractalwatch.repos.registry_repo import BreakoutRegistry
    from fractalwatch.repos.stats_repo import StatsRepo

    init_db(config.db_path)
    feed = JsonFileFeed(config.feed_dir)
    return FractalEngine(
        config=config,
        bar_provider=feed,
        price_provider=feed,
        fractal_repo=FractalRepo(config.db_path),
        event_repo=BreakoutEventRepo(config.db_path),
        reaction_repo=ReactionRepo(config.db_path),
        stats_repo=StatsRepo(config.db_path),
        registry=BreakoutRegistry(config.db_path),
    )


def configure_api(config) -> None:
    """Point the read API at the repositories under ``config.db_path``."""
    from fractalwatch.api.routers import configure_routers
    from fractalwatch.repos.event_repo import BreakoutEventRepo
    from fractalwatch.repos.fractal_repo import FractalRepo
    from fractalwatch.repos.reaction_repo import ReactionRepo
    from fractalwatch.repos.stats_repo import StatsRepo

    configure_routers(
        fractal_repo=FractalRepo(config.db_path),
        event_repo=BreakoutEventRepo(config.db_path),
        reaction_repo=ReactionRepo(config.db_path),
        stats_repo=StatsRepo(config.db_path),
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli(argv: list[str] | None = None) -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio

    from fractalwatch.config import load_config

    parser = argparse.ArgumentParser(description="FractalWatch breakout engine")
    parser.add_argument(
        "--mode",
        choices=["refresh", "scan", "run", "serve", "dedup", "report"],
        default="run",
        help="Operating mode (default: run)",
    )
    parser.add_argument(
        "--cycles",
        type=int,
        default=0,
        help="Stop after this many scan cycles in run mode (0 = unlimited)",
    )
    parser.add_argument("--env", help="Path to a .env file")
    args = parser.parse_args(argv)

    config = load_config(args.env)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    engine = build_engine(config)

    if args.mode == "refresh":
        asyncio.run(engine.refresh_fractals())
    elif args.mode == "scan":
        result = asyncio.run(engine.run_once())
        logger.info(
            "Scan complete: %d new breakout(s), %d already recorded, %d failed",
            result["new_breakouts"], result["already_recorded"], result["failed"],
        )
    elif args.mode == "dedup":
        engine.repair_logs()
    elif args.mode == "report":
        _report(engine)
    elif args.mode == "serve":
        import uvicorn

        configure_api(config)
        uvicorn.run(app, host="0.0.0.0", port=config.api_port, log_level="info")
    else:
        import signal

        def handle_shutdown(signum, frame):
            logger.info("Shutdown signal received, stopping after this cycle.")
            engine.stop()

        signal.signal(signal.SIGINT, handle_shutdown)
        configure_api(config)
        asyncio.run(_run_engine_and_api(engine, config.api_port, args.cycles))


def _report(engine) -> None:
    """Log the trading context for every instrument with stats."""
    context = engine.trading_context()
    if not context:
        logger.info("No resolved breakouts yet.")
        return
    for row in context:
        logger.info(
            "%s: %d breakout(s), long %.1f%% / short %.1f%% → %s",
            row["instrument"],
            row["total_breakouts"],
            row["long_probability"],
            row["short_probability"],
            row["bias"],
        )


async def _run_engine_and_api(engine, port: int, max_cycles: int = 0) -> None:
    """Start the read API and the scan loop concurrently."""
    import asyncio

    import uvicorn

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_engine():
        try:
            await engine.run(max_cycles=max_cycles)
        finally:
            server.should_exit = True

    logger.info("API available at http://localhost:%d", port)
    results = await asyncio.gather(
        server.serve(),
        _run_engine(),
        return_exceptions=True,
    )
    logger.info("FractalWatch stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()
