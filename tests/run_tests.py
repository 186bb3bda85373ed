#!/usr/bin/env python3
"""
Test runner for translate-gpt
"""
import os
import sys
import unittest

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

def run_all_tests():
    """Run all test cases and return the result."""

    # Discover all tests in the current directory
    test_dir = os.path.dirname(os.path.abspath(__file__))
    test_suite = unittest.defaultTestLoader.discover(test_dir, pattern="test_*.py")

    # Run tests with verbose output
    return unittest.TextTestRunner(verbosity=2).run(test_suite)

if __name__ == "__main__":
    # Exit with appropriate code for CI integration
    result = run_all_tests()
    sys.exit(0 if result.wasSuccessful() else 1)
