"""Native-messaging host: framing, payload extraction, dispatch."""
