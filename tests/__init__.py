"""
Test suite for the EzyOlive Practice API.

Contains unit tests for the scheduling and invoicing rules and
integration tests for the HTTP API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
