from dataclasses import dataclass


@dataclass(frozen=True)
class Reply:
    """Una línea de respuesta del canal de control: código de tres dígitos + texto."""
    code: int
    text: str

    def to_line(self) -> str:
        return f"{self.code} {self.text}\r\n"

    def encode(self) -> bytes:
        return self.to_line().encode('utf-8')


# --- CATÁLOGO DE RESPUESTAS ---

OPENING_ASCII = Reply(150, "Opening ASCII mode data connection.")
OPENING_BINARY = Reply(150, "Opening binary mode data connection.")
OPENING_LISTING = Reply(150, "Opening data connection for file list.")
SERVICE_READY = Reply(220, "FTP Server Ready")
GOODBYE = Reply(221, "Goodbye.")
TRANSFER_COMPLETE = Reply(226, "Transfer complete.")
LOGIN_OK = Reply(230, "Login successful.")
DIRECTORY_CHANGED = Reply(250, "Directory successfully changed.")
NEED_PASSWORD = Reply(331, "User name okay, need password.")
SERVICE_TIMEOUT = Reply(421, "Service timeout.")
CANT_OPEN_DATA = Reply(425, "Can't open data connection.")
TRANSFER_ABORTED = Reply(426, "Connection closed; transfer aborted.")
DIRECTORY_UNAVAILABLE = Reply(450, "Requested file action not taken. Directory unavailable.")
LOCAL_ERROR = Reply(451, "Requested action aborted: local error in processing.")
UNKNOWN_COMMAND = Reply(500, "Syntax error, command unrecognized.")
SYNTAX_ERROR_ARG = Reply(501, "Syntax error in parameters or arguments.")
NOT_LOGGED_IN = Reply(530, "Not logged in.")
LOGIN_INCORRECT = Reply(530, "Login incorrect.")
ACCESS_DENIED = Reply(550, "Access denied.")
FILE_UNAVAILABLE = Reply(550, "Requested action not taken. File unavailable.")


def pwd_reply(virtual_path: str) -> Reply:
    # Las comillas dentro del path se duplican (RFC 959)
    quoted = virtual_path.replace('"', '""')
    return Reply(257, f'"{quoted}" is the current directory.')


def passive_reply(host_port: str) -> Reply:
    return Reply(227, f"Entering Passive Mode ({host_port}).")
