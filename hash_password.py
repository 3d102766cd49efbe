"""
Generate bcrypt hashes for seeding users.json.

    python hash_password.py admin123 password123
    python hash_password.py --admin admin@techstore.com --name Admin admin123

With --admin the first password is used to append an admin account to the
users file in DATA_DIR instead of only printing hashes.
"""
import argparse
import logging
import sys

from database import create_document, db
from schemas import User as UserSchema
from security import hash_password

logger = logging.getLogger(__name__)


def create_admin(email: str, name: str, password: str) -> dict:
    if db["user"].find_one(email=email):
        raise SystemExit(f"{email} already exists in {db['user'].path}")
    user = UserSchema(
        id=db["user"].next_id(),
        name=name,
        email=email,
        password=hash_password(password),
        role="admin",
    )
    return create_document("user", user)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate bcrypt password hashes")
    parser.add_argument("passwords", nargs="+")
    parser.add_argument("--admin", metavar="EMAIL", help="append an admin user with the first password")
    parser.add_argument("--name", default="Administrador")
    args = parser.parse_args(argv)

    if args.admin:
        user = create_admin(args.admin, args.name, args.passwords[0])
        print(f"Admin {user['email']} created with id {user['id']}")
        return 0

    for password in args.passwords:
        print(f"Password: {password}")
        print(f"Hash: {hash_password(password)}")
        print("---")
    print("\nCopy these hashes into users.json")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
