"""Business services: admission, moderation, generation, storage and failure handling."""
