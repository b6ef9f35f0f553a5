"""
Grievance Lifecycle Engine
Shared SQLAlchemy instance.

All model modules import ``db`` from here so that ``create_app`` can bind a
single extension object to the Flask application.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
