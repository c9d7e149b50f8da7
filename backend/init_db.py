"""
Database initialization script
Run this to create tables and seed a kiosk operator plus a demo worker
"""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from portal.core.database import engine, Base, SessionLocal
from portal.core.security import get_password_hash
from portal.models import User, UserRole  # registers every table on Base
from portal.services.checkin_codes import issue_personal_codes


def init_db():
    """Initialize database with tables"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ Tables created successfully")


def seed_data():
    """Seed initial data"""
    db = SessionLocal()

    try:
        print("\nSeeding initial data...")

        admin = db.query(User).filter(User.username == "admin").first()
        if not admin:
            admin = User(
                email="admin@example.com",
                username="admin",
                first_name="System",
                last_name="Administrator",
                hashed_password=get_password_hash("admin123"),
                role=UserRole.ADMIN.value,
            )
            db.add(admin)
            print("✓ Admin user created (username: admin, password: admin123)")

        worker = db.query(User).filter(User.username == "worker1").first()
        if not worker:
            worker = User(
                email="worker@example.com",
                username="worker1",
                first_name="Jane",
                last_name="Doe",
                hashed_password=get_password_hash("worker123"),
                role=UserRole.WORKER.value,
                division="vendor",
            )
            db.add(worker)
            print("✓ Demo worker created (username: worker1, password: worker123)")

        db.commit()

        codes = issue_personal_codes(db, [worker], created_by=admin.id, label="seed")
        print(f"✓ Kiosk code for worker1: {codes[0].code}")

        print("\n✓ Database seeded successfully!")

    except Exception as e:
        print(f"\n✗ Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    print("=" * 60)
    print("Workforce Portal - Database Initialization")
    print("=" * 60)

    init_db()
    seed_data()

    print("\n" + "=" * 60)
    print("Initialization complete!")
    print("=" * 60)
    print("\nYou can now access:")
    print("  - API: http://localhost:8000")
    print("  - API Docs: http://localhost:8000/docs")
    print("=" * 60)
