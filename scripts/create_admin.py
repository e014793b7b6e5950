# scripts/create_admin.py
# Création (ou promotion) d'un compte administrateur FABQUOTE
#
# Usage:
#   python scripts/create_admin.py --email admin@exemple.fr --password 'motdepasse'
#       [--first-name Prenom --last-name Nom]

import argparse
import sys
from pathlib import Path

# Ajout répertoire parent au path Python
sys.path.append(str(Path(__file__).parent.parent))

from core.errors import ValidationError
from db.session import SessionLocal, init_db
from services.user_service import UserService


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Crée ou promeut un administrateur")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True, help="8 caractères minimum")
    parser.add_argument("--first-name", default="Admin")
    parser.add_argument("--last-name", default="FabQuote")
    return parser.parse_args(argv)


def create_or_promote_admin(db, email: str, password: str, first_name: str, last_name: str):
    """Retourne (utilisateur, created). Un compte existant est promu sans changer son mot de passe."""
    users = UserService(db)
    existing = users.get_user_by_email(email)
    if existing is not None:
        return users.set_admin(existing, True), False

    if len(password) < 8:
        raise ValidationError.for_field("password", "Password must be at least 8 characters")
    user = users.create_user(
        email=email,
        password=password,
        first_name=first_name,
        last_name=last_name,
        is_admin=True,
    )
    return user, True


def main(argv=None) -> int:
    args = parse_args(argv)

    print("=" * 60)
    print("  FABQUOTE - Compte administrateur")
    print("=" * 60)

    init_db()
    db = SessionLocal()
    try:
        user, created = create_or_promote_admin(
            db, args.email, args.password, args.first_name, args.last_name
        )
    except ValidationError as e:
        print(f"[ERREUR] {e.message}: {e.details}")
        return 1
    finally:
        db.close()

    if created:
        print(f"[OK] Administrateur créé: {user.email} ({user.id})")
    else:
        print(f"[OK] Compte existant promu administrateur: {user.email}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
