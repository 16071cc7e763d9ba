"""Host detection: platform, network and access-port facts."""
