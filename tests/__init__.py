"""adrealm test suite."""
