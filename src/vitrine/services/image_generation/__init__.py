"""AI image generation: providers, prompt building and model routing."""
