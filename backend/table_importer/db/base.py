"""Declarative base shared by the service's own tables."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
