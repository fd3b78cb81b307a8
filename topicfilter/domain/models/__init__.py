"""Domain models shared by the core and infrastructure layers."""
