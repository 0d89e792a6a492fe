"""Transport layer: HTTP/WebSocket server and CLI."""
