import os
import sys
import argparse
import logging

from ftpd.config import ENV_CONFIG, ServerConfig, load_config, apply_overrides, validate_config
from ftpd.errors import ConfigError
from ftpd.log import EventLog, setup_logging
from ftpd.server_core import FtpServer

DEFAULT_CONFIG = "server.yaml"

logger = logging.getLogger("ftpd")


def build_parser():
    parser = argparse.ArgumentParser(
        description="Sandboxed FTP server: one root directory per configured user."
    )
    parser.add_argument(
        '-c', '--config',
        default=os.environ.get(ENV_CONFIG),
        help=f'YAML config file (default: $FTP_CONFIG or ./{DEFAULT_CONFIG} if present)'
    )
    parser.add_argument('-a', '--host', help='The IP address to bind to (overrides Server.Host)')
    parser.add_argument('-p', '--port', type=int,
                        help='Control port; 0 picks a free port (overrides Server.Port)')
    parser.add_argument('--log-level', help='Console log level: DEBUG, INFO, WARNING, ERROR')
    return parser


def read_config(args) -> ServerConfig:
    config_path = args.config
    if config_path is None and os.path.exists(DEFAULT_CONFIG):
        config_path = DEFAULT_CONFIG
    if config_path is None:
        config = ServerConfig()
    else:
        config = load_config(config_path)
    config = apply_overrides(config, host=args.host, port=args.port, log_level=args.log_level)
    return validate_config(config)


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        config = read_config(args)
    except ConfigError as e:
        print(f"Error de configuración: {e}", file=sys.stderr)
        return 2

    try:
        setup_logging(config.log)
    except OSError as e:
        print(f"No se pudo inicializar el logging: {e}", file=sys.stderr)
        return 2
    if not config.users:
        logger.warning("[CORE] No hay usuarios configurados: nadie podrá iniciar sesión")

    try:
        server = FtpServer(config, EventLog(config.log.event_file))
    except OSError as e:
        print(f"Failed to bind on {config.host}:{config.port}: {e}", file=sys.stderr)
        if config.port < 1024:
            print("Hint: ports below 1024 need privileges; try --port 2121.", file=sys.stderr)
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("[CORE] Servidor detenido por teclado")
    return 0


if __name__ == "__main__":
    sys.exit(main())
