import sys

from backend.auth.jwt_handler import create_access_token
from backend.database import SessionLocal
from backend.models.user import User


def main() -> int:
    if len(sys.argv) != 2:
        print("usage: python -m backend.print_access_token <email>", file=sys.stderr)
        return 2

    email = sys.argv[1].strip().lower()
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email).first()
    finally:
        db.close()

    if user is None:
        print(f"No user with email {email}", file=sys.stderr)
        return 1

    print(create_access_token(subject=user.email, role=user.role))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
