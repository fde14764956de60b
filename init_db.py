import logging

from feedback_platform import create_app, db
from feedback_platform.seed import seed_demo_data


def init_database():
    app = create_app()
    with app.app_context():
        db.create_all()
        print("Database tables created successfully.")
        if seed_demo_data(app.extensions['storage'], app.config['PDF_DIRECTORY']):
            print("Demo data seeded (admin / admin123).")
        else:
            print("Demo data already present, skipping seed.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    init_database()
