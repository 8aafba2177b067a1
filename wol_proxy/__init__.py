"""Wake-on-LAN HTTP Proxy

A Python service that acts as a transparent HTTP proxy for a device that
may be asleep, waking it via Wake-on-LAN before forwarding each request.
"""

__version__ = "1.0.0"
