import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.user import User
from app.services.auth.passwords import hash_password, verify_password

logger = logging.getLogger(__name__)


class EmailAlreadyRegistered(Exception):
    pass


class UserService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> User | None:
        return self.db.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email.strip().lower()).one_or_none()

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str | None = None,
    ) -> User:
        """Create a local account. The very first account becomes admin."""
        email = email.strip().lower()
        if self.get_by_email(email):
            raise EmailAlreadyRegistered(email)
        is_first_user = self.db.query(User.id).first() is None
        user = User(
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            is_admin=is_first_user,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise EmailAlreadyRegistered(email)
        self.db.refresh(user)
        logger.info("user_registered", extra={"user_id": user.id})
        return user

    def authenticate(self, email: str, password: str) -> User | None:
        user = self.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    def set_checkout_customer(self, user: User, customer_id: str) -> User:
        user.checkout_customer_id = customer_id
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user
