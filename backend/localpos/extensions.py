# Overview: Flask extension instances for the in-memory relational store.

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
