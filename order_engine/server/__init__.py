"""HTTP/WebSocket surface: order intake, order lookup and live status streams."""
