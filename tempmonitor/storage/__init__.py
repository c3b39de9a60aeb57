"""Daily CSV log persistence."""
