"""consulsync - Mirror a Consul KV prefix into a local directory."""

__version__ = "0.1.0"
