"""Domain services: pure finance rules, intent resolution, operations and workflows."""
