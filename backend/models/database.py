"""
Database instance shared by all models.

Bound to the Flask app in create_app() via db.init_app(app).
"""
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
