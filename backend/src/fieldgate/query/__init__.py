"""Query predicates and request translation."""
