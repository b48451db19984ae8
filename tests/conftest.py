"""Test configuration: every test runs against an in-memory SQLite database."""
import os
import sys

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['MAIL_ACTIVATED'] = 'false'

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
