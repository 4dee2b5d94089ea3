"""
Polaris Correction Relay Application

Connects to the Point One Polaris correction service, authenticates with the
receiver serial number, reports a rough ECEF position, and relays the raw
correction stream to every local client connected to the listener.

- Configuration management (environment / .env)
- Protocol handling (frame encoding, checksum)
- Relay engine (upstream link, client registry, acceptor, broadcaster)
- Utilities (logging)
"""

import argparse
import dataclasses
import sys

from config import config
from relay import RelayService
from utils import setup_logging

VERSION = "1.0"

# Setup logging
logger = setup_logging()


def build_config(args: argparse.Namespace):
    """コマンドライン引数で上書きした設定を作成"""
    overrides = {
        "UPSTREAM_HOST": args.host,
        "UPSTREAM_PORT": args.port,
        "SERIAL_NUMBER": args.serial,
        "DOWNSTREAM_PORT": args.listen_port,
        "FANOUT_MODE": args.fanout,
    }
    if args.position:
        overrides.update(ECEF_X=args.position[0], ECEF_Y=args.position[1], ECEF_Z=args.position[2])
    return dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})


def wait_for_quit(service: RelayService) -> None:
    """'q' が入力されるまで待つ。標準入力が閉じている場合は Ctrl-C まで待つ"""
    print("\nEnter q to quit.")
    for line in sys.stdin:
        if line.strip().lower() == "q":
            return
    logger.info("stdin closed; relay keeps running until interrupted.")
    while not service.wait(1.0):
        if not service.running:
            logger.warning("Relay threads exited.")
            return


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Relay Polaris RTK corrections to local TCP clients.")
    parser.add_argument(
        "--host", default=None,
        help=f"Upstream host (default: {config.UPSTREAM_HOST})"
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help=f"Upstream port (default: {config.UPSTREAM_PORT})"
    )
    parser.add_argument(
        "-s", "--serial", default=None,
        help="Receiver serial number used as the auth token (default: SERIAL_NUMBER)"
    )
    parser.add_argument(
        "-l", "--listen-port", type=int, default=None,
        help=f"Local listening port (default: {config.DOWNSTREAM_PORT})"
    )
    parser.add_argument(
        "--position", type=float, nargs=3, metavar=("X", "Y", "Z"), default=None,
        help="Receiver ECEF position in meters"
    )
    parser.add_argument(
        "--fanout", choices=("direct", "queued"), default=None,
        help=f"Fan-out mode (default: {config.FANOUT_MODE})"
    )
    args = parser.parse_args(argv)

    logger.info("Point One Navigation Polaris Relay")
    logger.info(f"Version {VERSION}")

    cfg = build_config(args)
    try:
        service = RelayService.from_config(cfg)
    except ValueError as e:
        # FrameEncodingError もここで捕捉される
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        _, port = service.start()
    except OSError as e:
        logger.error(f"Could not start listener on port {cfg.DOWNSTREAM_PORT}: {e}")
        return 1

    logger.info(f"Connect receivers to 127.0.0.1:{port} to get RTCM3 corrections.")
    try:
        wait_for_quit(service)
    except KeyboardInterrupt:
        logger.info("Exiting due to KeyboardInterrupt.")
    finally:
        service.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
