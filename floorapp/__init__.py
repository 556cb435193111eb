"""Offline-first pallet tracking core for the warehouse floor client."""
