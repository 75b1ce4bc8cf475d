"""getcerts -- ACME HTTP-01 certificate lifecycle for Let's Encrypt."""

__version__ = "2.1.0"
