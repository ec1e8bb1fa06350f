"""Session-wide state shared by the assistant components."""
