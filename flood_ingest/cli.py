"""CLI entry point: API, receptor sin API, barrido puntual y override manual."""

from __future__ import annotations

import argparse
import logging
import time

import uvicorn

from common.config import get_settings

from .monitoring.logging_setup import configure_logging
from .mqtt.receiver import FloodReceiver, start_receiver, stop_receiver

logger = logging.getLogger(__name__)


def _serve(args: argparse.Namespace) -> None:
    uvicorn.run("flood_ingest.main:app", host=args.host, port=args.port, log_level=args.log_level.lower())


def _receiver(args: argparse.Namespace) -> None:
    settings = get_settings()
    receiver = start_receiver(settings, connect_mqtt=True)
    logger.info("Receiver running (Ctrl+C para detener)")
    try:
        while True:
            time.sleep(args.stats_seconds)
            logger.info("[RECEIVER] %s", receiver.router.stats)
    except KeyboardInterrupt:
        logger.info("Stopping receiver...")
    finally:
        stop_receiver()


def _sweep(args: argparse.Namespace) -> None:
    settings = get_settings()
    receiver = FloodReceiver(settings)
    timeout = args.timeout_minutes or settings.heartbeat_timeout_minutes
    receiver.sweeper.set_heartbeat_timeout(timeout)
    offline = receiver.sweeper.check_offline_devices()
    logger.info("Sweep done: %d device(s) marked DISCONNECTED", len(offline))


def _force_status(args: argparse.Namespace) -> None:
    receiver = FloodReceiver(get_settings())
    change = receiver.force_device_status(args.code, args.status.upper(), reason="manual")
    logger.info("Device %s: %s -> %s", args.code, change.previous_status.value, change.device.status.value)


def main() -> None:
    p = argparse.ArgumentParser(description="Flood telemetry ingest service")
    p.add_argument("--log-level", default="INFO")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="API + WebSocket (y receptor MQTT si FF_MQTT_ENABLED)")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=_serve)

    recv = sub.add_parser("receiver", help="solo el receptor MQTT, sin API")
    recv.add_argument("--stats-seconds", type=float, default=60.0)
    recv.set_defaults(func=_receiver)

    sweep = sub.add_parser("sweep", help="una pasada del barrido offline y salir")
    sweep.add_argument("--timeout-minutes", type=float, default=None)
    sweep.set_defaults(func=_sweep)

    force = sub.add_parser("force-status", help="fuerza el estado de conectividad de un dispositivo")
    force.add_argument("code")
    force.add_argument("status", choices=["connected", "disconnected", "CONNECTED", "DISCONNECTED"])
    force.set_defaults(func=_force_status)

    args = p.parse_args()
    configure_logging(args.log_level.upper())
    args.func(args)


if __name__ == "__main__":
    main()
