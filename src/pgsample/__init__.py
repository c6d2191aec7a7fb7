"""
pgsample: referentially-consistent sampling of live Postgres databases.

Samples a bounded number of rows per table, follows every foreign key those
rows reference, and emits restorable SQL alongside the schema DDL.
"""

__version__ = "0.4.0"
