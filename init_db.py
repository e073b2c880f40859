# init_db.py
# Create the tracking tables on the configured DATABASE_URL.
from trackwise.core.database import init_db

if __name__ == "__main__":
    init_db()
    print("✅ Tracking tables created")
