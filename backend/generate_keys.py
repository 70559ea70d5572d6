"""Write backend/.env from .env.template with fresh JWT and token encryption keys.

USAGE:
    cd backend && python generate_keys.py
"""

import os
import secrets

from cryptography.fernet import Fernet

TEMPLATE_PATH = ".env.template"
ENV_PATH = ".env"

GENERATED = {
    "JWT_SECRET": secrets.token_urlsafe(32),
    "TOKEN_ENCRYPTION_KEY": Fernet.generate_key().decode(),
}


def main():
    if not os.path.exists(TEMPLATE_PATH):
        print(f"Error: {TEMPLATE_PATH} not found. Please ensure it exists.")
        return

    if os.path.exists(ENV_PATH):
        print(f"{ENV_PATH} already exists; refusing to overwrite existing keys.")
        return

    with open(TEMPLATE_PATH, "r") as f:
        lines = f.read().splitlines()

    new_lines = []
    for line in lines:
        name = line.split("=", 1)[0]
        if name in GENERATED:
            new_lines.append(f"{name}={GENERATED[name]}")
        else:
            new_lines.append(line)

    with open(ENV_PATH, "w") as f:
        f.write("\n".join(new_lines) + "\n")

    print(f"Wrote {ENV_PATH} with new {', '.join(GENERATED)}")


if __name__ == "__main__":
    main()
