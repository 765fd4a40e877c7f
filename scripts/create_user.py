import argparse
import getpass
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from orchid.api import PASSWORD_MIN_LENGTH
from orchid.application import build_components
from orchid.config import load_config
from orchid.errors import OrchidError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an Orchid user")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the YAML configuration file (defaults to ORCHID_CONFIG_PATH or config/config.yaml)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    try:
        config = load_config(Path(args.config_path).expanduser() if args.config_path else None)
        components = build_components(config)
        user = components.service.create_user(args.name, args.email, password)
    except OrchidError as exc:  # duplicates, etc.
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
