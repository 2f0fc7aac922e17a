"""Command line interface modules.

This package provides the command-line entry point for starting the proxy
server: option parsing, logging setup, configuration validation and error
reporting.
"""
