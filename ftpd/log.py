import json
import os
import logging
import logging.handlers
import threading
from datetime import datetime, timezone
from typing import Any, Dict

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
SYSLOG_SOCKET = "/dev/log"

events_logger = logging.getLogger("ftpd.events")


def setup_logging(log_config) -> None:
    """Consola siempre; archivo y syslog opcionales, cada uno con su propio nivel."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(log_config.level)
    console.setFormatter(formatter)
    root.addHandler(console)

    levels = [log_config.level]
    if log_config.file:
        file_handler = logging.FileHandler(log_config.file, encoding='utf-8')
        file_handler.setLevel(log_config.file_level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
        levels.append(log_config.file_level)
    if log_config.syslog_level is not None:
        syslog = logging.handlers.SysLogHandler(address=syslog_address(log_config.syslog_address))
        syslog.setLevel(log_config.syslog_level)
        syslog.setFormatter(logging.Formatter("ftpd[%(process)d]: [%(levelname)s] [%(name)s] %(message)s"))
        root.addHandler(syslog)
        levels.append(log_config.syslog_level)
    root.setLevel(min(levels))


def syslog_address(value=None):
    """Convierte 'host:puerto' en (host, puerto) por UDP; cualquier otra cosa es la ruta de un socket unix."""
    if not value:
        return SYSLOG_SOCKET if os.path.exists(SYSLOG_SOCKET) else ("localhost", logging.handlers.SYSLOG_UDP_PORT)
    host, sep, port = value.rpartition(":")
    if sep and host and port.isdigit():
        return host, int(port)
    return value


class EventLog:
    """
    Sumidero de eventos estructurados de la sesión (conexiones, login, comandos,
    transferencias). Escribe una línea legible por logging y, si hay archivo de
    eventos, un objeto JSON por línea.
    """

    def __init__(self, event_file: str = None, logger: logging.Logger = None):
        self.event_file = event_file
        self.logger = logger or events_logger
        self._lock = threading.Lock()

    def emit(self, event_type: str, client, username: str = None, level=logging.INFO, **details: Any) -> Dict:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            "client": _format_client(client),
            "username": username,
            "details": details,
        }
        detail_text = " ".join(f"{k}={v}" for k, v in details.items())
        self.logger.log(level, f"[{event_type}] {entry['client']} user={username} {detail_text}".rstrip())
        if self.event_file:
            line = json.dumps(entry, default=str)
            try:
                with self._lock:
                    with open(self.event_file, "a", encoding="utf-8") as f:
                        f.write(line + "\n")
            except OSError as e:
                # La sesión sigue aunque el archivo de eventos falle
                self.logger.error(f"[EVENTS] No se pudo escribir en {self.event_file}: {e}")
        return entry

    # --- EVENTOS ---

    def connection_opened(self, client):
        return self.emit("CONNECTION_OPENED", client)

    def connection_closed(self, client, username=None, reason="quit"):
        return self.emit("CONNECTION_CLOSED", client, username, reason=reason)

    def auth_attempt(self, client, username, success: bool, reason: str = None):
        level = logging.INFO if success else logging.WARNING
        return self.emit("AUTH_ATTEMPT", client, username, level=level, success=success, reason=reason)

    def command_received(self, client, username, command_text: str):
        return self.emit("COMMAND", client, username, level=logging.DEBUG, command=command_text)

    def path_escape(self, client, username, verb: str, requested: str):
        return self.emit("PATH_ESCAPE", client, username, level=logging.WARNING, command=verb, requested=requested)

    def transfer(self, client, username, verb: str, path: str, outcome: str, nbytes: int = 0):
        level = logging.INFO if outcome == "complete" else logging.WARNING
        return self.emit("TRANSFER", client, username, level=level,
                         command=verb, path=path, outcome=outcome, bytes=nbytes)


def _format_client(client) -> str:
    if isinstance(client, tuple) and len(client) >= 2:
        return f"{client[0]}:{client[1]}"
    return str(client)
