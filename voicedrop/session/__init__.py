"""Recording session orchestration and delivery."""
