import os
import hashlib
import hmac
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, Optional

from ftpd.errors import UnknownUser, BadPassword

HASH_PREFIX = "pbkdf2_sha256$"
HASH_ITERATIONS = 260000
# Hash que no coincide con nada: iguala el costo de login de usuarios inexistentes
DUMMY_HASH = f"{HASH_PREFIX}{HASH_ITERATIONS}${'00' * 16}${'00' * 32}"


@dataclass(frozen=True)
class UserAccount:
    username: str
    password: Optional[str]     # None: la cuenta acepta cualquier contraseña (anonymous)
    root: str

    @property
    def accepts_any_password(self) -> bool:
        return self.password is None


# --- HASH DE CONTRASEÑAS ---

def hash_password(password: str, iterations: int = HASH_ITERATIONS) -> str:
    """Devuelve hash PBKDF2 seguro."""
    salt = os.urandom(16)
    dk = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, iterations)
    return f"pbkdf2_sha256${iterations}${salt.hex()}${dk.hex()}"


def verify_password(stored_hash: str, password: str) -> bool:
    """Verifica contraseña comparando con el hash guardado."""
    try:
        _algo, iter_str, salt_hex, hash_hex = stored_hash.split("$")
        salt = bytes.fromhex(salt_hex)
        new_hash = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, int(iter_str))
    except ValueError:
        return False
    return hmac.compare_digest(new_hash.hex(), hash_hex)


def password_matches(stored: Optional[str], given: str) -> bool:
    if stored is None:
        return True
    if stored.startswith(HASH_PREFIX):
        return verify_password(stored, given)
    # Comparación exacta (sensible a mayúsculas) en tiempo constante
    return hmac.compare_digest(stored.encode('utf-8'), given.encode('utf-8'))


# --- ALMACÉN DE CUENTAS ---

class AuthStore:
    """
    Mapa inmutable username -> UserAccount, cargado una vez al arrancar.
    Se comparte entre todas las sesiones sin locks: nadie lo escribe después.
    """

    def __init__(self, accounts: Iterable[UserAccount]):
        table: Dict[str, UserAccount] = {}
        for account in accounts:
            table[account.username] = account
        self._accounts = MappingProxyType(table)
        self._hashed = any(a.password and a.password.startswith(HASH_PREFIX) for a in table.values())

    def __contains__(self, username):
        return username in self._accounts

    def __len__(self):
        return len(self._accounts)

    def get(self, username) -> Optional[UserAccount]:
        return self._accounts.get(username)

    def authenticate(self, username: str, password: str) -> UserAccount:
        """Devuelve la cuenta o lanza UnknownUser / BadPassword."""
        account = self._accounts.get(username)
        if account is None:
            if self._hashed:
                verify_password(DUMMY_HASH, password or '')
            raise UnknownUser(username)
        if not password_matches(account.password, password or ''):
            raise BadPassword(username)
        return account
