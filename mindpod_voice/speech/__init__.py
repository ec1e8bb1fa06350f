"""Speech input/output controllers and the data they exchange."""
