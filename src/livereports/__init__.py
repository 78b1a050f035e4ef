"""livereports — real-time push layer for the POS reporting dashboard.

Browser and CLI clients subscribe to report groups (report kind + date
range + data type) and get pushed fresh report payloads whenever the
underlying data changes. When push is unavailable, clients fall back to
polling the HTTP refresh endpoint.
"""

__version__ = "0.1.0"
