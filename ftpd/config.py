import os
import logging
import ipaddress
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

import yaml

from ftpd.errors import ConfigError
from ftpd.users import UserAccount

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 2121
PASSIVE_TIMEOUT = 30        # Espera máxima por la conexión de datos PASV/PORT
DATA_TIMEOUT = 60           # Timeout de E/S una vez abierto el canal de datos
INACTIVITY_TIMEOUT = 180    # 3 minutos sin comandos

ENV_PASV_ADDRESS = 'FTP_PASV_ADDRESS'
ENV_CONFIG = 'FTP_CONFIG'


@dataclass(frozen=True)
class LogConfig:
    level: int = logging.INFO
    file: Optional[str] = None
    file_level: int = logging.DEBUG
    event_file: Optional[str] = None
    syslog_level: Optional[int] = None      # None: sin syslog
    syslog_address: Optional[str] = None    # "host:puerto" o socket unix; por defecto /dev/log


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    users: Tuple[UserAccount, ...] = ()
    passive_address: Optional[str] = None
    passive_timeout: float = PASSIVE_TIMEOUT
    data_timeout: Optional[float] = DATA_TIMEOUT
    idle_timeout: Optional[float] = INACTIVITY_TIMEOUT
    allow_foreign_addresses: bool = False
    canonical_check: bool = True
    log: LogConfig = field(default_factory=LogConfig)


# --- CARGA ---

def load_config(config_filename: str, environ=None) -> ServerConfig:
    """Lee el YAML, aplica variables de entorno y valida."""
    try:
        with open(config_filename, "r", encoding="utf-8") as file:
            raw = yaml.safe_load(file.read())
    except OSError as e:
        raise ConfigError(f"Could not read config file {config_filename}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Unable to decode {config_filename}: {e}")
    config = config_from_dict(raw or {})
    config = apply_environment(config, environ if environ is not None else os.environ)
    return validate_config(config)


def config_from_dict(raw: dict) -> ServerConfig:
    if not isinstance(raw, dict):
        raise ConfigError("Top level of the config file must be a mapping")
    server = _section(raw, "Server")
    log = _section(raw, "Log")
    users = raw.get("Users") or []
    if not isinstance(users, list):
        raise ConfigError("'Users' must be a list of {Username, Password, Root}")

    accounts = []
    for i, entry in enumerate(users):
        if not isinstance(entry, dict):
            raise ConfigError(f"Users[{i}] must be a mapping")
        username = entry.get("Username")
        root = entry.get("Root")
        if not username or not root:
            raise ConfigError(f"Users[{i}] needs both 'Username' and 'Root'")
        password = entry.get("Password")
        accounts.append(UserAccount(str(username), None if password is None else str(password), str(root)))

    return ServerConfig(
        host=str(server.get("Host", DEFAULT_HOST)),
        port=_as_int(server.get("Port", DEFAULT_PORT), "Server.Port"),
        users=tuple(accounts),
        passive_address=server.get("PassiveAddress"),
        passive_timeout=_as_float(server.get("PassiveTimeout", PASSIVE_TIMEOUT), "Server.PassiveTimeout"),
        data_timeout=_optional_timeout(server.get("DataTimeout", DATA_TIMEOUT), "Server.DataTimeout"),
        idle_timeout=_optional_timeout(server.get("IdleTimeout", INACTIVITY_TIMEOUT), "Server.IdleTimeout"),
        allow_foreign_addresses=bool(server.get("AllowForeignAddresses", False)),
        canonical_check=bool(server.get("CanonicalCheck", True)),
        log=LogConfig(
            level=_as_level(log.get("Level", "INFO"), "Log.Level"),
            file=log.get("File"),
            file_level=_as_level(log.get("FileLevel", "DEBUG"), "Log.FileLevel"),
            event_file=log.get("EventFile"),
            syslog_level=_optional_level(log.get("SyslogLevel"), "Log.SyslogLevel"),
            syslog_address=log.get("SyslogAddress"),
        ),
    )


def apply_environment(config: ServerConfig, environ) -> ServerConfig:
    env_ip = environ.get(ENV_PASV_ADDRESS, '').strip()
    if env_ip:
        config = replace(config, passive_address=env_ip)
    return config


def apply_overrides(config: ServerConfig, host=None, port=None, log_level=None) -> ServerConfig:
    """Valores de la línea de comandos: pisan a los del archivo."""
    if host is not None:
        config = replace(config, host=host)
    if port is not None:
        config = replace(config, port=port)
    if log_level is not None:
        config = replace(config, log=replace(config.log, level=_as_level(log_level, "--log-level")))
    return config


def validate_config(config: ServerConfig) -> ServerConfig:
    if not 0 <= config.port <= 65535:
        raise ConfigError(f"Invalid port {config.port}")
    if config.passive_address:
        try:
            ipaddress.IPv4Address(config.passive_address)
        except ValueError:
            raise ConfigError(f"PassiveAddress must be an IPv4 address, got {config.passive_address!r}")
    if config.passive_timeout <= 0:
        raise ConfigError("PassiveTimeout must be positive")
    for name, path in (("Log.File", config.log.file), ("Log.EventFile", config.log.event_file)):
        if path and not os.path.isdir(os.path.dirname(os.path.abspath(path))):
            raise ConfigError(f"{name}: directory for {path} does not exist")

    seen = set()
    accounts = []
    for account in config.users:
        if account.username in seen:
            raise ConfigError(f"Duplicate user '{account.username}'")
        seen.add(account.username)
        root = os.path.abspath(os.path.expanduser(account.root))
        if not os.path.isdir(root):
            raise ConfigError(f"Invalid configuration for user {account.username}: "
                              f"data directory {root} does not exist")
        accounts.append(replace(account, root=root))
    return replace(config, users=tuple(accounts))


# --- AUXILIARES ---

def _section(raw, name) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _as_int(value, name) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _as_float(value, name) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _optional_timeout(value, name) -> Optional[float]:
    if value is None:
        return None
    seconds = _as_float(value, name)
    return seconds if seconds > 0 else None


def _optional_level(value, name) -> Optional[int]:
    if value is None:
        return None
    return _as_level(value, name)


def _as_level(value, name) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(str(value).upper())
    if not isinstance(level, int):
        raise ConfigError(f"{name}: unknown log level {value!r}")
    return level
