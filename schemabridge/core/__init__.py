"""schemabridge/core/__init__.py"""
