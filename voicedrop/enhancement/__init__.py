"""AI text enhancement: prompts, providers and the retrying client."""
