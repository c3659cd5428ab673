"""
Test suite for Clinic Records.

Contains unit and integration tests for the service layer and the HTTP API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
