import sys
import json
import argparse
import logging
from pathlib import Path

from OSCAR.config import Config, QUANTITIES
from OSCAR.src.core.processing import read_source
from OSCAR.src.core.worker import BatchWorker

logger = logging.getLogger("OSCAR")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="oscar", description="Measure three-phase oscillogram captures")
    parser.add_argument("--config", type=Path, default=None, help="Config JSON (default ~/.oscar_config.json)")
    parser.add_argument("--workers", type=int, default=None, help="Thread pool size")
    parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--plots", type=Path, default=None, help="Write per-phase overlay PNGs here")

    sub = parser.add_subparsers(dest="command", required=True)

    power = sub.add_parser("power", help="Power metrics from voltage/current capture pairs")
    power.add_argument("--voltage", nargs="+", type=Path, required=True)
    power.add_argument("--current", nargs="+", type=Path, required=True)

    for name, help_text in (
        ("steady", "Steady-state amplitude per phase"),
        ("transient", "Peak excursion of transient captures"),
        ("frequency", "Fundamental frequency per phase"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("files", nargs="+", type=Path)
        p.add_argument("--quantity", choices=QUANTITIES, default="voltage")

    serve = sub.add_parser("serve", help="Run the HTTP upload service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config.load(args.config)

    if args.command == "serve":
        from OSCAR.src.web.app import create_app

        app = create_app(config, args.workers)
        app.run(host=args.host, port=args.port)
        return 0

    worker = BatchWorker(config, args.workers, plot_dir=args.plots)
    if args.command == "power":
        if len(args.voltage) != len(args.current):
            logger.warning("Pairing %d voltage with %d current files by index",
                           len(args.voltage), len(args.current))
        pairs = [(read_source(v), read_source(i)) for v, i in zip(args.voltage, args.current)]
        results = worker.run_pairs(pairs)
    else:
        sources = [read_source(path) for path in args.files]
        results = worker.run_files(sources, args.command, args.quantity)

    json.dump([r.to_dict() for r in results], sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 0 if all(p.ok for r in results for p in r.phases) else 1


if __name__ == "__main__":
    sys.exit(main())
