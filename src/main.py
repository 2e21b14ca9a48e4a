#!/usr/bin/env python3
"""
Main entry point for rig-bridge.
Loads configuration, activates the configured radio plugin and serves
the HTTP/SSE gateway until interrupted.
"""

import argparse

from .config import ConfigStore, default_config_path
from .logging_cfg import configure_logging, log, LogLevel
from .plugins.base import PluginServices
from .registry import PluginRegistry
from .server import create_app
from .state import RigState
from .ui import UserInterface
from .version import __author__, __build_date__, __version__, SUPPORTED_RADIOS

VERSION = __version__
BUILD_DATE = __build_date__
AUTHOR = __author__

DEFAULT_HOST = '0.0.0.0'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"rig-bridge radio control bridge v{VERSION}",
                                     formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    parser.add_argument("-v", "--verbose", action="store_true", default=False, help="increase verbosity")
    parser.add_argument("--port", type=int, help="HTTP port (overrides config file)")
    parser.add_argument("--host", type=str, default=DEFAULT_HOST, help="HTTP bind address")
    parser.add_argument("--config", type=str, help=f"Config file path (default: {default_config_path()})")
    parser.add_argument("--no-banner", action="store_true", default=False, help="Skip startup banner")
    parser.add_argument("--version", action="store_true", default=False, help="Show version information and exit")
    parser.add_argument("--logfile", type=str, help="Custom log file path (default: ~/.cache/rig-bridge/logs/rig-bridge.log)")
    parser.add_argument("--syslog", action="store_true", default=False, help="Enable syslog handler for systemd integration")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    ui = UserInterface()

    if args.version:
        ui.show_version_info(VERSION, BUILD_DATE, AUTHOR, SUPPORTED_RADIOS)
        return 0

    configure_logging(
        verbose=args.verbose,
        log_file=args.logfile,
        enable_syslog=args.syslog
    )

    config_store = ConfigStore(args.config)
    config_store.load()
    if args.port:
        config_store.set_port(args.port)

    state = RigState()
    registry = PluginRegistry(config_store, PluginServices(state=state))
    registry.register_builtins()
    app = create_app(config_store, registry, state)

    port = config_store.port
    if not args.no_banner:
        shown_host = 'localhost' if args.host == DEFAULT_HOST else args.host
        ui.show_banner(VERSION, BUILD_DATE, config_store.radio(),
                       f"http://{shown_host}:{port}", config_store.ptt_enabled)

    registry.connect_active()

    try:
        log(f"HTTP gateway listening on {args.host}:{port}")
        app.run(host=args.host, port=port, threaded=True, use_reloader=False)
    except OSError as e:
        log(f"Cannot start HTTP server on port {port}: {e}", LogLevel.CRITICAL)
        return 1
    except KeyboardInterrupt:
        log("Interrupted, shutting down")
    finally:
        registry.shutdown()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
