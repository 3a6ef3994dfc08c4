"""Command line tool for helm-proxy."""
