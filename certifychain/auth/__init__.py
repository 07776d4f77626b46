"""Wallet sign-in, server-side sessions and the caller principal."""
