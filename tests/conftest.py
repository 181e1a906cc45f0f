"""
Pytest configuration for all tests.
Sets up Python path to find the backend rxledger package and server module.
Shared test doubles live in tests/fakes.py.
"""

import sys
import os

# Add backend directory to Python path
backend_path = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'backend'))
if backend_path not in sys.path:
    sys.path.insert(0, backend_path)

# Make tests/fakes.py importable from every test directory
tests_path = os.path.abspath(os.path.dirname(__file__))
if tests_path not in sys.path:
    sys.path.insert(0, tests_path)
