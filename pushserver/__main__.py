"""Allow ``python -m pushserver``."""

from .main import main

main()
