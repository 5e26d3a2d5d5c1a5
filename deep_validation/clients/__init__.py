"""Vendor client interface, typed records and the REST adapter."""

from .base import VendorClient
from .rest import TwilioRestClient


__all__ = ["TwilioRestClient", "VendorClient"]
