from ftpd import replies
from ftpd.replies import Reply


class FtpError(Exception):
    """Error recuperable de un comando. El dispatcher lo traduce a exactamente una respuesta."""
    reply = replies.LOCAL_ERROR

    def __init__(self, message=None, reply: Reply = None):
        if reply is not None:
            self.reply = reply
        super().__init__(message or self.reply.text)


class UnknownCommand(FtpError):
    reply = replies.UNKNOWN_COMMAND


class SyntaxErrorArg(FtpError):
    reply = replies.SYNTAX_ERROR_ARG


class NotLoggedIn(FtpError):
    reply = replies.NOT_LOGGED_IN


class PathEscape(FtpError):
    """La ruta pedida sale del root virtual del usuario."""
    reply = replies.ACCESS_DENIED


class FileUnavailable(FtpError):
    reply = replies.FILE_UNAVAILABLE


class DirectoryUnavailable(FtpError):
    reply = replies.DIRECTORY_UNAVAILABLE


class DataConnectionFailed(FtpError):
    reply = replies.CANT_OPEN_DATA


class TransferAborted(FtpError):
    reply = replies.TRANSFER_ABORTED


# --- AUTENTICACIÓN ---

class AuthError(Exception):
    """Fallo de login. Internamente distinguible, para el cliente siempre es 530."""
    reason = "auth_failed"


class UnknownUser(AuthError):
    reason = "unknown_user"


class BadPassword(AuthError):
    reason = "bad_password"


# --- FATALES / ARRANQUE ---

class ControlChannelError(Exception):
    """Error de E/S en el socket de control: la sesión termina sin responder."""


class ConfigError(Exception):
    pass
