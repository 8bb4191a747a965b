"""CLI Package for the Account Lifecycle Engine."""
