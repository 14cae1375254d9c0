"""Declarative base for all ledger models."""

from sqlalchemy.orm import declarative_base

Base = declarative_base()
