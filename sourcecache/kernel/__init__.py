"""Pure resolution logic and the ports adapters plug into."""
