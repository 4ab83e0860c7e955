#!/usr/bin/env python3
"""Create (or recreate with --drop) the BeautyBook tables."""
import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from beautybook import create_app
from beautybook.config import get_config
from beautybook.extensions import db


def init_database(env=None, drop=False):
    app = create_app(get_config(env))
    with app.app_context():
        if drop:
            db.drop_all()
            print("Dropped existing tables")
        db.create_all()
        print(f"Database tables initialized at {app.config['SQLALCHEMY_DATABASE_URI']}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--env", default=None, help="development, testing or production")
    parser.add_argument("--drop", action="store_true", help="drop all tables first")
    args = parser.parse_args()
    init_database(args.env, args.drop)
