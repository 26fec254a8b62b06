"""
dnsmasq-doctor: systematic, read-only diagnosis of a dnsmasq server or a DNS client host.

Public entrypoints: cli.main, app.app
"""

__version__ = "0.1.0"
