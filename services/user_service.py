# services/user_service.py - Comptes utilisateurs (inscription, authentification)

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.errors import ValidationError
from core.security import get_password_hash, verify_password
from db.models import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserService:
    """Accès aux utilisateurs. Le hash du mot de passe ne sort jamais de ce service."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.db.execute(
            select(User).where(User.email == normalize_email(email))
        ).scalar_one_or_none()

    def create_user(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        profile_image_url: Optional[str] = None,
        is_admin: bool = False,
    ) -> User:
        """
        Crée un utilisateur.

        Raises:
            ValidationError si l'email est déjà enregistré
        """
        if self.get_user_by_email(email) is not None:
            raise ValidationError("Email already registered", details=[
                {"field": "email", "message": "Email already registered"}
            ])

        user = User(
            email=normalize_email(email),
            hashed_password=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            profile_image_url=profile_image_url,
            is_admin=is_admin,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # Inscription concurrente sur le même email
            self.db.rollback()
            raise ValidationError("Email already registered", details=[
                {"field": "email", "message": "Email already registered"}
            ])
        self.db.refresh(user)
        logger.info("Utilisateur créé: %s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> Optional[User]:
        """Retourne l'utilisateur si les credentials sont valides, sinon None."""
        user = self.get_user_by_email(email)
        if user is None or not user.hashed_password:
            return None
        if not verify_password(password, user.hashed_password):
            return None
        return user

    def set_admin(self, user: User, is_admin: bool = True) -> User:
        user.is_admin = is_admin
        self.db.commit()
        self.db.refresh(user)
        return user
