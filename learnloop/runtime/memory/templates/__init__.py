"""Static prompt text and the default seed catalog."""
