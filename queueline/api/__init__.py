"""HTTP and WebSocket surface of the queue service."""
