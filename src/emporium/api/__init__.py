"""HTTP integration for Emporium."""
