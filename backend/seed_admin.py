import logging
import os

from sqlmodel import Session, select

from core.database import create_db_and_tables, engine
from core.logging import init_logging
from models.user import Admin, User, UserRole
from utils.security import hash_password

logger = logging.getLogger("seed_admin")

ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL", "admin@water.local")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "ChangeMe!2024")
ADMIN_NAME = os.getenv("SEED_ADMIN_NAME", "System Administrator")


def seed_admin(session: Session) -> Admin:
    # check if admin already exists
    existing_user = session.exec(select(User).where(User.email == ADMIN_EMAIL)).first()
    if existing_user:
        admin = session.exec(select(Admin).where(Admin.user_id == existing_user.id)).first()
        if admin:
            logger.info("Admin %s already exists", ADMIN_EMAIL)
            return admin
        existing_user.role = UserRole.admin
        user = existing_user
    else:
        user = User(
            email=ADMIN_EMAIL,
            password_hash=hash_password(ADMIN_PASSWORD),
            role=UserRole.admin,
            name=ADMIN_NAME,
        )
    session.add(user)
    session.flush()

    admin = Admin(user_id=user.id, name=user.name or ADMIN_NAME)
    session.add(admin)
    session.commit()
    session.refresh(admin)
    logger.info("Admin %s seeded", ADMIN_EMAIL)
    return admin


if __name__ == "__main__":
    init_logging()
    create_db_and_tables()
    with Session(engine) as session:
        seed_admin(session)
