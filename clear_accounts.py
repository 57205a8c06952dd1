from database import Base, SessionLocal, engine
from models import Account


def main() -> None:
    """
    Delete all rows from the `accounts` table.

    Every image password stored so far is lost; users of generated
    images will need to register again. Intended for local/dev use.
    """
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        deleted = db.query(Account).delete()
        db.commit()
        print(f"Deleted {deleted} accounts from the database.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
