"""Linkage predicates: relationship checks between a principal and an entity."""
