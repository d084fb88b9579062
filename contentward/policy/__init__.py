"""Policy schema and YAML loading."""
