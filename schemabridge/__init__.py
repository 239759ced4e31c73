"""schemabridge: schema mapping and data migration between heterogeneous databases."""

__version__ = "0.3.0"
