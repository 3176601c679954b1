"""Plugin system: hook specifications, manager, stage registry and data sources."""
