"""Concrete adapters behind the trainkb/interfaces contracts."""
