"""Work delivery: polling loop and retry backoff."""
