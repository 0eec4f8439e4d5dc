"""Calendar MCP Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - config/: Settings parsing, key normalization, data directory
  - registry/: Account registry lookups
  - auth/: Credential store, loopback listener, Microsoft and Google auth
  - providers/: Graph and Google provider services, factory
  - cli/: Command line handlers
- integration/: Multi-account end-to-end scenarios (no network)

Running tests:
    # All tests
    pytest

    # Specific module
    pytest tests/unit/auth/

    # Excluding slow tests
    pytest -m "not slow"
"""
