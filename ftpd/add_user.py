#!/usr/bin/env python3
import os
import argparse
import getpass

import yaml

from ftpd.config import ENV_CONFIG
from ftpd.users import hash_password

DEFAULT_CONFIG = "server.yaml"


def load_raw_config(config_filename):
    if os.path.exists(config_filename):
        with open(config_filename, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


def save_raw_config(config_filename, raw):
    with open(config_filename, "w", encoding="utf-8") as f:
        yaml.safe_dump(raw, f, default_flow_style=False, sort_keys=False)


def upsert_user(raw, username, password, root):
    """Agrega o reemplaza la cuenta en la sección Users. Devuelve True si ya existía."""
    users = raw.setdefault("Users", [])
    entry = {"Username": username, "Password": password, "Root": root}
    for i, existing in enumerate(users):
        if existing.get("Username") == username:
            users[i] = entry
            return True
    users.append(entry)
    return False


def find_user(raw, username):
    for existing in raw.get("Users") or []:
        if existing.get("Username") == username:
            return existing
    return None


# --- INTERFAZ CLI ---

def main(argv=None):
    parser = argparse.ArgumentParser(description="Add or update an FTP account in the server config.")
    parser.add_argument('-c', '--config', default=os.environ.get(ENV_CONFIG, DEFAULT_CONFIG),
                        help=f'YAML config file to update (default: {DEFAULT_CONFIG})')
    parser.add_argument('--anonymous', action='store_true',
                        help='Create an account that accepts any password')
    args = parser.parse_args(argv)

    print("=== Crear nuevo usuario FTP ===")

    username = input("Nombre de usuario: ").strip()
    if not username:
        print("Usuario no puede estar vacío.")
        return 1

    raw = load_raw_config(args.config)
    if find_user(raw, username) is not None:
        print(f"El usuario '{username}' ya existe.")
        choice = input("¿Deseas sobrescribirlo? (s/n): ").lower()
        if choice != "s":
            print("Operación cancelada.")
            return 1

    root = input("Directorio raíz: ").strip()
    if not root or not os.path.isdir(root):
        print(f"El directorio '{root}' no existe.")
        return 1

    if args.anonymous:
        password = None
    else:
        password = getpass.getpass("Contraseña: ")
        confirm = getpass.getpass("Confirmar contraseña: ")
        if password != confirm:
            print("Las contraseñas no coinciden.")
            return 1
        password = hash_password(password)

    upsert_user(raw, username, password, os.path.abspath(root))
    save_raw_config(args.config, raw)
    print(f"Usuario '{username}' agregado correctamente a {args.config}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
