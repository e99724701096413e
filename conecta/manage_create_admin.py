"""Create a staff account (admin by default) for the transaction desk.

Run: `python -m conecta.manage_create_admin --email admin@example.com --password changeme`
"""

import argparse
from contextlib import contextmanager

from conecta import config
from conecta.auth.jwt import get_password_hash
from conecta.config import Base
from conecta.constants import DEFAULT_ROLES
from conecta.models.models import Role, User


@contextmanager
def session_scope():
    session = config.SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ensure_roles(db) -> None:
    existing = {name for (name,) in db.query(Role.name).all()}
    for name, description in DEFAULT_ROLES:
        if name not in existing:
            db.add(Role(name=name, description=description))
    db.flush()


def create_staff_user(db, email: str, password: str, role_name: str, first_name: str, last_name: str):
    """Returns the new user, or ``None`` when the email is already taken."""
    ensure_roles(db)
    role = db.query(Role).filter(Role.name == role_name).one()
    if db.query(User).filter(User.email == email).first():
        return None
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        hashed_password=get_password_hash(password),
        role_id=role.id,
    )
    db.add(user)
    db.flush()
    return user


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create a staff user")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", default="admin", choices=[name for name, _ in DEFAULT_ROLES])
    parser.add_argument("--first-name", default="Initial")
    parser.add_argument("--last-name", default="Administrator")
    args = parser.parse_args(argv)

    Base.metadata.create_all(bind=config.engine)
    with session_scope() as db:
        user = create_staff_user(db, args.email, args.password, args.role, args.first_name, args.last_name)
        if user is None:
            print("User already exists with that email.")
            return 1
        print(f"Created {args.role} user with id {user.id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
