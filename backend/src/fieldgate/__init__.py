"""fieldgate: schema registry and field-level access control for record collections."""

__version__ = "0.1.0"
