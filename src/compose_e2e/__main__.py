"""Allow `python -m compose_e2e`."""

from .main import main

main()
