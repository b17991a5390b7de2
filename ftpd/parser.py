from enum import Enum
from typing import NamedTuple, Optional


class Verb(Enum):
    USER = 'USER'
    PASS = 'PASS'
    QUIT = 'QUIT'
    PWD = 'PWD'
    CWD = 'CWD'
    CDUP = 'CDUP'
    TYPE = 'TYPE'
    MODE = 'MODE'
    STRU = 'STRU'
    PASV = 'PASV'
    PORT = 'PORT'
    LIST = 'LIST'
    NLST = 'NLST'
    RETR = 'RETR'
    STOR = 'STOR'
    NOOP = 'NOOP'
    UNKNOWN = 'UNKNOWN'


# Alias históricos (RFC 775)
ALIASES = {
    'XPWD': Verb.PWD,
    'XCWD': Verb.CWD,
    'XCUP': Verb.CDUP,
}


class Command(NamedTuple):
    verb: Verb
    arg: Optional[str] = None
    raw_verb: str = ''

    @property
    def name(self) -> str:
        return self.raw_verb or self.verb.value

    def log_text(self) -> str:
        """Texto apto para logs: nunca muestra la contraseña."""
        if self.verb is Verb.PASS:
            return f"{self.name} ****"
        if self.arg:
            return f"{self.name} {self.arg}"
        return self.name


def lookup_verb(word: str) -> Verb:
    upper = word.upper()
    if upper in ALIASES:
        return ALIASES[upper]
    try:
        verb = Verb(upper)
    except ValueError:
        return Verb.UNKNOWN
    if verb is Verb.UNKNOWN:
        return Verb.UNKNOWN
    return verb


def parse_line(line) -> Optional[Command]:
    """
    Convierte una línea del canal de control en un Command.
    Devuelve None para líneas vacías (no se responde nada). Nunca lanza:
    un verbo desconocido es un Command válido con Verb.UNKNOWN.
    """
    if isinstance(line, bytes):
        line = line.decode('utf-8', errors='replace')
    line = line.rstrip('\r\n')
    if not line.strip():
        return None
    # Solo se separa el verbo: el argumento puede contener espacios (paths)
    parts = line.lstrip().split(' ', 1)
    word = parts[0]
    arg = parts[1] if len(parts) > 1 else None
    if arg is not None and arg.strip() == '':
        arg = None
    return Command(lookup_verb(word), arg, word.upper())
