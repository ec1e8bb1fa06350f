"""Assistant runtime: status coordinator, onboarding and command routing."""
