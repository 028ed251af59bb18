"""Speech and language model providers."""
