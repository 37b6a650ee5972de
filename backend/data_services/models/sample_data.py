"""
Data Services — sampleData Table
==================================

What:  Core table definition for the seeded sample rows.
How:   Registered on Base.metadata; created by init_models() if absent.
Who:   Queried and written by DataStore.

Table Design:
    sampleData(id INTEGER, postId INTEGER, name TEXT, email TEXT, body TEXT)

    - No primary key and no unique constraint: `id` is the record id from the
      seed endpoint, but reseeding inserts the same ids again. The ORM needs a
      primary key, so this is a Core Table rather than a mapped class.
    - Index on id: every read is ORDER BY id with LIMIT/OFFSET.
"""

from sqlalchemy import Column, Index, Integer, Table, Text

from data_services.database import Base

sample_data = Table(
    "sampleData",
    Base.metadata,
    Column("id", Integer, nullable=True),
    Column("postId", Integer, nullable=True),
    Column("name", Text, nullable=True),
    Column("email", Text, nullable=True),
    Column("body", Text, nullable=True),
    Index("idx_sample_data_id", "id"),
)

COLUMNS = ("id", "postId", "name", "email", "body")
