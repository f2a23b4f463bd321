"""Generate DNSEndpoint and Certificate objects from Contour HTTPProxy / IngressRoute."""

__version__ = "0.1.0"
