"""Seed database with demo data."""
from decimal import Decimal
import uuid

from homebids.auth import get_password_hash
from homebids.database import Base, SessionLocal, engine
from homebids.models import Bid, Project, User
from homebids.services.aliases import AliasAssignor


def seed():
    """Seed database with demo data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        # Create users
        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'email': 'owner@example.com',
                'password': 'owner12345',
                'full_name': 'Hannah Owner',
                'role': 'homeowner'
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'email': 'alpha@example.com',
                'password': 'alpha12345',
                'full_name': 'Alpha Renovations',
                'role': 'contractor'
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'email': 'bravo@example.com',
                'password': 'bravo12345',
                'full_name': 'Bravo Builders',
                'role': 'contractor'
            },
        ]

        users = []
        for user_data in users_data:
            password = user_data.pop('password')
            user = User(password_hash=get_password_hash(password), **user_data)
            db.add(user)
            users.append(user)

        db.flush()
        owner, alpha, bravo = users

        project = Project(
            id=uuid.UUID('00000000-0000-0000-0000-000000000201'),
            owner_id=owner.id,
            title='Kitchen remodel',
            description='Replace cabinets and countertops, new backsplash.',
            status='bidding',
        )
        db.add(project)
        db.flush()

        bids_data = [
            {'contractor_id': alpha.id, 'amount': Decimal('18500.00'), 'description': 'Six weeks, materials included.'},
            {'contractor_id': bravo.id, 'amount': Decimal('16900.00'), 'description': 'Eight weeks, client supplies tile.'},
        ]
        for bid_data in bids_data:
            db.add(Bid(project_id=project.id, **bid_data))

        db.commit()

        AliasAssignor(db).ensure_aliases(project.id)

        print("✅ Database seeded successfully!")
        print("\nDemo users:")
        print("  owner@example.com/owner12345 (Homeowner)")
        print("  alpha@example.com/alpha12345 (Contractor A)")
        print("  bravo@example.com/bravo12345 (Contractor B)")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
