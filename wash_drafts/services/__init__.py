"""Service layer: formatting and draft payload assembly."""
