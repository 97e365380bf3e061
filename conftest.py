"""
Root pytest configuration.
Sets the testing environment before any application module is imported,
so core.config picks the in-memory SQLite database.
"""
import os

os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ["LOG_JSON"] = "False"
