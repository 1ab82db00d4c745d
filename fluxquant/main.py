"""FluxQuant — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
scans, backtests and key-usage reports.
"""

import logging

from fastapi import FastAPI

from fluxquant.api.routers import router

app = FastAPI(title="FluxQuant Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("fluxquant")

EXIT_OK = 0
EXIT_TOTAL_FAILURE = 1
EXIT_COOLDOWN = 2
EXIT_USAGE = 3


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(prog="fluxquant", description="FluxQuant market toolkit")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Use deterministic synthetic market data (no network)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Scan an asset universe for alerts (JSON output)")
    scan.add_argument("--asset-class", default="all", help="crypto, stocks, or all")
    scan.add_argument("--force", action="store_true", help="Ignore the scan cooldown")

    bt = sub.add_parser("backtest", help="Backtest a strategy (JSON output)")
    bt.add_argument("--symbol", required=True, help="Symbol or comma-separated symbols")
    bt.add_argument("--strategy", default="SMA-Cross", help="Strategy name")
    bt.add_argument("--days", type=int, default=90, help="History length in days")
    bt.add_argument(
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Strategy parameter override (repeatable)",
    )
    bt.add_argument("--commission", type=float, help="Fixed fee per fill (overrides COMMISSION)")
    bt.add_argument(
        "--commission-percent",
        type=float,
        help="Percent of notional per fill (overrides COMMISSION_PERCENT)",
    )

    keys = sub.add_parser("keys", help="Show provider key usage")
    keys.add_argument("--reset", action="store_true", help="Reset every credential's usage")

    serve = sub.add_parser("serve", help="Run the API server and scheduled scans")
    serve.add_argument("--port", type=int, help="Override API_PORT")
    serve.add_argument("--no-scheduler", action="store_true", help="Disable periodic scans")
    return parser


def _parse_params(pairs: list[str]) -> dict[str, float]:
    params: dict[str, float] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Expected KEY=VALUE, got '{pair}'")
        params[key.strip()] = float(value)
    return params


def _run_cli(argv=None) -> int:
    """Parse CLI arguments and dispatch.  Returns the process exit code."""
    import asyncio
    import json

    from fluxquant.config import load_config
    from fluxquant.services import Services

    args = _build_parser().parse_args(argv)
    config = load_config(args.env_file)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    services = Services(config, demo=args.demo or None)

    if args.command == "scan":
        code, payload = asyncio.run(_scan(services, args.asset_class, args.force))
    elif args.command == "backtest":
        code, payload = asyncio.run(_backtest(services, args))
    elif args.command == "keys":
        from fluxquant.cli.report import format_key_usage

        if args.reset:
            services.key_pool.reset_all()
            services.persist_key_usage()
        print(format_key_usage(services.key_pool.get_usage_statistics()))
        return EXIT_OK
    else:
        asyncio.run(_serve(services, args.port or config.api_port, not args.no_scheduler))
        return EXIT_OK

    services.persist_key_usage()
    print(json.dumps(payload, indent=2))
    return code


async def _scan(services, asset_class: str, force: bool) -> tuple[int, dict]:
    from fluxquant.cli.report import scan_summary
    from fluxquant.errors import CooldownActiveError

    scanner = services.scanner
    classes = scanner.asset_classes if asset_class == "all" else [asset_class]
    if any(ac not in scanner.asset_classes for ac in classes):
        return EXIT_USAGE, {
            "error": f"Unknown asset class '{asset_class}'",
            "available": scanner.asset_classes,
        }

    reports: dict[str, dict] = {}
    cooling = failed = 0
    for ac in classes:
        try:
            report = await scanner.request_scan(ac, force=force)
        except CooldownActiveError as exc:
            reports[ac] = {"error": str(exc), "remaining_ms": exc.remaining_ms}
            cooling += 1
            continue
        reports[ac] = scan_summary(report)
        if report.total_failure:
            failed += 1

    if failed:
        code = EXIT_TOTAL_FAILURE
    elif cooling == len(classes):
        code = EXIT_COOLDOWN
    else:
        code = EXIT_OK
    return code, {"scans": reports}


async def _backtest(services, args) -> tuple[int, dict]:
    from dataclasses import replace

    from fluxquant.backtest.engine import BacktestEngine
    from fluxquant.cli.report import batch_summary
    from fluxquant.strategy.models import StrategyConfig

    symbols = [s.strip() for s in args.symbol.split(",") if s.strip()]
    try:
        config = StrategyConfig(args.strategy, _parse_params(args.param))
        engine = services.backtester
        fees = {
            k: v for k, v in
            (("commission", args.commission), ("commission_percent", args.commission_percent))
            if v is not None
        }
        if fees:
            engine = BacktestEngine(services.gateway, replace(engine.settings, **fees))
        batch = await engine.run_multi_symbol(symbols, config, args.days)
    except (KeyError, ValueError) as exc:
        message = exc.args[0] if exc.args else str(exc)
        return EXIT_USAGE, {"error": str(message)}

    for result in batch.results:
        services.backtest_repo.insert_run(result, dict(config.parameters))
    return (EXIT_TOTAL_FAILURE if batch.total_failure else EXIT_OK), batch_summary(batch)


async def _serve(services, port: int, scheduler: bool) -> None:
    """Start the API server and, optionally, the periodic scanner."""
    import uvicorn

    from fluxquant.api.routers import configure_routers

    configure_routers(services)
    if scheduler:
        services.scanner.start()

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)
    logger.info("API available at http://localhost:%d", port)
    try:
        await server.serve()
    finally:
        await services.scanner.stop()
        services.persist_key_usage()
        logger.info("FluxQuant stopped.")


def main() -> None:
    import sys

    sys.exit(_run_cli())


if __name__ == "__main__":
    main()
