"""Allow ``python -m auth_socks_proxy``."""

from auth_socks_proxy.cmd.cli import app

app()
