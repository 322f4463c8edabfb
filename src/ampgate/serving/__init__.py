"""Serving surface exposing the AMP query protocol over HTTP."""
