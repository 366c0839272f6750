"""Infrastructure layer module.

Configuration, logging, persistence, identity tokens and payment
provider clients.
"""
